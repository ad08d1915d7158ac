import os
from datetime import date
from decimal import Decimal

import click
from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFError, CSRFProtect, generate_csrf

from tka_invoice.logging_config import setup_logging


def _ensure_sqlite_directory(uri):
    if uri.startswith('sqlite:///') and ':memory:' not in uri:
        os.makedirs(os.path.dirname(uri[len('sqlite:///'):]) or '.', exist_ok=True)


def create_app(config_name=None):
    """Application factory pattern."""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)

    # Load configuration
    from tka_invoice.config import config
    app.config.from_object(config[config_name])

    _ensure_sqlite_directory(app.config['SQLALCHEMY_DATABASE_URI'])

    # Initialize extensions
    from tka_invoice.models import db
    db.init_app(app)

    # Initialize CSRF protection; JSON clients send X-CSRFToken
    CSRFProtect(app)

    # Initialize Flask-Limiter; limits and storage come from RATELIMIT_* config
    Limiter(key_func=get_remote_address, app=app, strategy="fixed-window")

    # Setup logging
    setup_logging(app)

    @app.after_request
    def set_security_headers(response):
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        if not app.config.get('DEBUG') and not app.config.get('TESTING'):
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    # Error handlers
    @app.errorhandler(400)
    def bad_request_error(error):
        if isinstance(error, CSRFError):
            return jsonify({
                'success': False,
                'message': 'CSRF token is missing or invalid. Fetch a new one from /api/csrf-token.'
            }), 400
        return jsonify({
            'success': False,
            'message': getattr(error, 'description', None) or 'Bad request'
        }), 400

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({'success': False, 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def ratelimit_handler(error):
        """Handle rate limiting errors."""
        return jsonify({
            'success': False,
            'message': 'Too many requests. Please try again later.',
            'retry_after': getattr(error, 'retry_after', 900)
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled error: {error}")
        return jsonify({'success': False, 'message': 'Internal server error'}), 500

    @app.route('/api/csrf-token')
    def csrf_token():
        """Token for the X-CSRFToken header on mutating requests."""
        return jsonify({'success': True, 'csrf_token': generate_csrf()})

    # Register blueprints
    from tka_invoice.routes.companies import companies_bp
    from tka_invoice.routes.job_descriptions import job_descriptions_bp
    from tka_invoice.routes.tka_workers import tka_workers_bp
    from tka_invoice.routes.bank_accounts import bank_accounts_bp
    from tka_invoice.routes.invoices import invoices_bp
    from tka_invoice.routes.settings import settings_bp
    from tka_invoice.routes.reports import reports_bp

    app.register_blueprint(companies_bp)
    app.register_blueprint(job_descriptions_bp)
    app.register_blueprint(tka_workers_bp)
    app.register_blueprint(bank_accounts_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(reports_bp)

    # CLI commands
    @app.cli.command()
    def init_db():
        """Initialize the database."""
        with app.app_context():
            db.create_all()
            click.echo('Database tables created successfully.')

    @app.cli.command()
    def init_settings():
        """Insert the default application settings."""
        with app.app_context():
            from tka_invoice.models import AppSetting

            try:
                created = AppSetting.create_default_settings()
                click.echo(f'Created {created} default settings.')
                for key, value in AppSetting.get_all().items():
                    click.echo(f'  {key}: {value}')
            except Exception as e:
                click.echo(f'Error creating settings: {str(e)}', err=True)

    @app.cli.command()
    def seed_data():
        """Seed the database with sample data."""
        with app.app_context():
            from tka_invoice.models import AppSetting, BankAccount, Company, JobDescription, TkaWorker
            from tka_invoice.services.invoice_lines import create_invoice

            # Check if data already exists
            if Company.query.count() > 0:
                click.echo('Sample data already exists. Skipping...')
                return

            AppSetting.create_default_settings()

            company = Company(
                company_name='PT Sinar Teknik Mandiri',
                npwp='01.234.567.8-901.000',
                idtku='0012345678901000',
                address='Jl. Sudirman No. 10, Jakarta',
                contact_email='finance@sinarteknik.co.id'
            )
            db.session.add(company)
            db.session.flush()  # Get IDs

            installation = JobDescription(company_id=company.id, job_name='Machine installation',
                                          job_description='On-site installation supervision',
                                          price=Decimal('1500000.00'), sort_order=1)
            training = JobDescription(company_id=company.id, job_name='Operator training',
                                      job_description='Training for local operators',
                                      price=Decimal('850000.50'), sort_order=2)
            workers = [
                TkaWorker(nama='Li Wei', passport='E12345678', divisi='Engineering'),
                TkaWorker(nama='Chen Ming', passport='E87654321', divisi='Training',
                          jenis_kelamin='Perempuan'),
            ]
            bank = BankAccount(bank_name='Bank Mandiri', account_number='123-00-0456789-0',
                               account_name='Spirit of Services', is_default=True)
            db.session.add_all([installation, training, bank, *workers])
            db.session.flush()

            try:
                invoice = create_invoice(company.id, date.today(), [
                    {'tka_id': workers[0].id, 'job_description_id': installation.id, 'quantity': 2, 'baris': 1},
                    {'tka_id': workers[1].id, 'job_description_id': training.id, 'quantity': 3, 'baris': 1},
                ])
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                click.echo(f'Error seeding data: {str(e)}', err=True)
                return

            click.echo('Sample data created successfully.')
            click.echo(f'Created invoice {invoice.invoice_number}: total Rp {invoice.total_amount}')

    @app.cli.command()
    @click.option('--fix', is_flag=True, help='Rewrite inconsistent totals from the lines')
    def check_totals(fix):
        """Verify stored invoice totals against their lines."""
        with app.app_context():
            from tka_invoice.models import Invoice
            from tka_invoice.services.totals import apply_invoice_totals, totals_are_consistent

            inconsistent = [invoice for invoice in Invoice.query.order_by(Invoice.id).all()
                            if not totals_are_consistent(invoice)]
            if not inconsistent:
                click.echo('All invoice totals are consistent.')
                return

            for invoice in inconsistent:
                click.echo(f'{invoice.invoice_number}: stored total {invoice.total_amount} does not match its lines')

            if fix:
                try:
                    for invoice in inconsistent:
                        apply_invoice_totals(invoice)
                    db.session.commit()
                    click.echo(f'Fixed {len(inconsistent)} invoices.')
                except Exception as e:
                    db.session.rollback()
                    click.echo(f'Error fixing totals: {str(e)}', err=True)

    return app
