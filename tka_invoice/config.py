import os
from decimal import Decimal


class Config:
    """Base configuration class."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Get base directory (project root)
    basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

    # Use absolute path for database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(basedir, "instance", "tka_invoice.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (JSON clients send the token in the X-CSRFToken header)
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600  # 1 hour

    # Session management
    PERMANENT_SESSION_LIFETIME = 1800  # 30 minutes
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Flask-Limiter settings
    RATELIMIT_ENABLED = True
    RATELIMIT_DEFAULT = '200 per day;50 per hour'
    RATELIMIT_STORAGE_URI = 'memory://'

    # Logging
    LOG_TO_FILE = True

    # Invoice business rules
    DEFAULT_VAT_PERCENTAGE = Decimal('11.00')
    INVOICE_NUMBER_PREFIX = 'INV'
    MAX_INVOICE_LINES = 100

    # Pagination
    PAGINATION_DEFAULT_LIMIT = 20
    PAGINATION_MAX_LIMIT = 50


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    DEVELOPMENT = True

    SESSION_COOKIE_SECURE = False

    # Disable CSRF for development API testing
    WTF_CSRF_ENABLED = False


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    DEVELOPMENT = False

    # Security settings for production
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    WTF_CSRF_TIME_LIMIT = 3600
    PERMANENT_SESSION_LIFETIME = 3600
    RATELIMIT_DEFAULT = '1000 per day;200 per hour'


class TestingConfig(Config):
    """Test-specific configuration."""
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False  # Disable CSRF for testing
    SECRET_KEY = 'test-secret-key-for-testing-only'
    RATELIMIT_ENABLED = False
    LOG_TO_FILE = False


# Configuration mapping
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
