import json
from datetime import datetime, date
from decimal import Decimal, ROUND_HALF_UP

from flask import current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def format_money(value):
    """Render a stored money value as a 2-decimal string for JSON output."""
    if value is None:
        value = 0
    return str(Decimal(str(value)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def _isoformat(value):
    return value.isoformat() if value else None


class Company(db.Model):
    """Client company that TKA workers are placed with."""
    __tablename__ = 'companies'

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(200), nullable=False)
    npwp = db.Column(db.String(20), nullable=False, unique=True)  # Tax ID
    idtku = db.Column(db.String(20), nullable=False, unique=True)
    address = db.Column(db.Text, nullable=False)
    contact_phone = db.Column(db.String(20), nullable=True)
    contact_email = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    job_descriptions = db.relationship('JobDescription', backref='company', lazy=True,
                                       cascade='all, delete-orphan',
                                       order_by='JobDescription.sort_order')
    invoices = db.relationship('Invoice', backref='company', lazy=True)

    def __repr__(self):
        return f'<Company #{self.id}: "{self.company_name}" (NPWP {self.npwp})>'

    @property
    def invoice_count(self):
        """Get total number of invoices for this company."""
        return len(self.invoices)

    @property
    def total_revenue(self):
        """Sum of stored invoice totals, excluding cancelled invoices."""
        return sum((Decimal(str(invoice.total_amount)) for invoice in self.invoices
                    if invoice.status != 'cancelled'), Decimal('0.00'))

    def to_dict(self):
        return {
            'id': self.id,
            'company_name': self.company_name,
            'npwp': self.npwp,
            'idtku': self.idtku,
            'address': self.address,
            'contact_phone': self.contact_phone,
            'contact_email': self.contact_email,
            'is_active': self.is_active,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class JobDescription(db.Model):
    """Priced job catalog entry belonging to a company."""
    __tablename__ = 'job_descriptions'

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    job_name = db.Column(db.String(200), nullable=False)
    job_description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Numeric(15, 2), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('price >= 0', name='check_job_price_non_negative'),
        db.Index('idx_job_company_active', 'company_id', 'is_active'),
    )

    def __repr__(self):
        return f'<JobDescription #{self.id}: "{self.job_name}" price={self.price}>'

    @classmethod
    def get_active(cls, job_description_id):
        """Get an active job description by ID, or None."""
        return cls.query.filter_by(id=job_description_id, is_active=True).first()

    def to_dict(self):
        return {
            'id': self.id,
            'company_id': self.company_id,
            'job_name': self.job_name,
            'job_description': self.job_description,
            'price': format_money(self.price),
            'is_active': self.is_active,
            'sort_order': self.sort_order,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class TkaWorker(db.Model):
    """Foreign worker (Tenaga Kerja Asing) placed at client companies."""
    __tablename__ = 'tka_workers'

    GENDERS = ('Laki-laki', 'Perempuan')

    id = db.Column(db.Integer, primary_key=True)
    nama = db.Column(db.String(100), nullable=False)
    passport = db.Column(db.String(20), nullable=False, unique=True)
    divisi = db.Column(db.String(100), nullable=True)
    jenis_kelamin = db.Column(db.String(20), nullable=False, default='Laki-laki')
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    family_members = db.relationship('TkaFamilyMember', backref='tka_worker', lazy=True,
                                     cascade='all, delete-orphan',
                                     order_by='TkaFamilyMember.id')

    __table_args__ = (
        db.CheckConstraint("jenis_kelamin IN ('Laki-laki', 'Perempuan')", name='check_gender_valid'),
    )

    def __repr__(self):
        return f'<TkaWorker #{self.id}: "{self.nama}" ({self.passport})>'

    @property
    def family_count(self):
        """Number of active family members."""
        return sum(1 for member in self.family_members if member.is_active)

    def to_dict(self):
        return {
            'id': self.id,
            'nama': self.nama,
            'passport': self.passport,
            'divisi': self.divisi,
            'jenis_kelamin': self.jenis_kelamin,
            'is_active': self.is_active,
            'family_count': self.family_count,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class TkaFamilyMember(db.Model):
    """Spouse, parent or child accompanying a TKA worker."""
    __tablename__ = 'tka_family_members'

    RELATIONSHIPS = ('spouse', 'parent', 'child')

    id = db.Column(db.Integer, primary_key=True)
    tka_id = db.Column(db.Integer, db.ForeignKey('tka_workers.id'), nullable=False)
    nama = db.Column(db.String(100), nullable=False)
    passport = db.Column(db.String(20), nullable=False, unique=True)
    jenis_kelamin = db.Column(db.String(20), nullable=False, default='Laki-laki')
    relationship = db.Column(db.String(20), nullable=False, default='spouse')
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint("jenis_kelamin IN ('Laki-laki', 'Perempuan')", name='check_family_gender_valid'),
        db.CheckConstraint("relationship IN ('spouse', 'parent', 'child')", name='check_family_relationship_valid'),
        db.Index('idx_family_tka_active', 'tka_id', 'is_active'),
    )

    def __repr__(self):
        return f'<TkaFamilyMember #{self.id}: "{self.nama}" {self.relationship} of worker {self.tka_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'tka_id': self.tka_id,
            'nama': self.nama,
            'passport': self.passport,
            'jenis_kelamin': self.jenis_kelamin,
            'relationship': self.relationship,
            'is_active': self.is_active,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }


class BankAccount(db.Model):
    """Bank account printed on invoices for payment."""
    __tablename__ = 'bank_accounts'

    id = db.Column(db.Integer, primary_key=True)
    bank_name = db.Column(db.String(100), nullable=False)
    account_number = db.Column(db.String(50), nullable=False)
    account_name = db.Column(db.String(100), nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    sort_order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<BankAccount {self.bank_name} {self.account_number}{" (default)" if self.is_default else ""}>'

    @classmethod
    def get_default(cls):
        """Get the default active bank account."""
        return cls.query.filter_by(is_default=True, is_active=True).first()

    @classmethod
    def clear_default(cls, except_id=None):
        """Unset the default flag on every account except the given one."""
        query = cls.query.filter_by(is_default=True)
        if except_id is not None:
            query = query.filter(cls.id != except_id)
        query.update({'is_default': False}, synchronize_session='fetch')

    def to_dict(self):
        return {
            'id': self.id,
            'bank_name': self.bank_name,
            'account_number': self.account_number,
            'account_name': self.account_name,
            'is_default': self.is_default,
            'is_active': self.is_active,
            'sort_order': self.sort_order,
        }


class Invoice(db.Model):
    """Invoice header with the persisted totals aggregate."""
    __tablename__ = 'invoices'

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(50), nullable=False, unique=True)
    company_id = db.Column(db.Integer, db.ForeignKey('companies.id'), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False, default=date.today)
    subtotal = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    vat_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('11.00'))
    vat_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default='draft')
    notes = db.Column(db.Text, nullable=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey('bank_accounts.id'), nullable=True)
    printed_count = db.Column(db.Integer, nullable=False, default=0)
    last_printed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    lines = db.relationship('InvoiceLine', backref='invoice', lazy=True,
                            cascade='all, delete-orphan',
                            order_by='InvoiceLine.line_order')
    bank_account = db.relationship('BankAccount', lazy='select')

    __table_args__ = (
        db.CheckConstraint('subtotal >= 0', name='check_subtotal_non_negative'),
        db.CheckConstraint('vat_amount >= 0', name='check_vat_amount_non_negative'),
        db.CheckConstraint('total_amount >= 0', name='check_total_amount_non_negative'),
        db.CheckConstraint('vat_percentage >= 0 AND vat_percentage <= 100', name='check_vat_percentage_valid'),
        db.CheckConstraint("status IN ('draft', 'finalized', 'paid', 'cancelled')", name='check_status_valid'),
        db.Index('idx_invoice_company_date', 'company_id', 'invoice_date'),
    )

    def __repr__(self):
        return f'<Invoice {self.invoice_number}: {self.company.company_name if self.company else "No Company"} - Rp{self.total_amount} ({self.status})>'

    @property
    def is_editable(self):
        """Header fields and lines can change only while the invoice is a draft."""
        return self.status == 'draft'

    @property
    def can_be_deleted(self):
        return self.status != 'paid'

    @property
    def line_count(self):
        return len(self.lines)

    def lines_by_baris(self):
        """Group lines by their printed row number, preserving line order."""
        groups = []
        index = {}
        for line in self.lines:
            if line.baris not in index:
                index[line.baris] = {'baris': line.baris, 'lines': []}
                groups.append(index[line.baris])
            index[line.baris]['lines'].append(line)
        return groups

    def to_dict(self, include_lines=False):
        data = {
            'id': self.id,
            'invoice_number': self.invoice_number,
            'company_id': self.company_id,
            'company_name': self.company.company_name if self.company else None,
            'invoice_date': _isoformat(self.invoice_date),
            'subtotal': format_money(self.subtotal),
            'vat_percentage': format_money(self.vat_percentage),
            'vat_amount': format_money(self.vat_amount),
            'total_amount': format_money(self.total_amount),
            'status': self.status,
            'notes': self.notes,
            'bank_account_id': self.bank_account_id,
            'printed_count': self.printed_count,
            'last_printed_at': _isoformat(self.last_printed_at),
            'line_count': self.line_count,
            'created_at': _isoformat(self.created_at),
            'updated_at': _isoformat(self.updated_at),
        }
        if include_lines:
            data['lines'] = [line.to_dict() for line in self.lines]
            data['company'] = self.company.to_dict() if self.company else None
            data['bank_account'] = self.bank_account.to_dict() if self.bank_account else None
        return data


class InvoiceLine(db.Model):
    """Invoice line for one worker/job pair."""
    __tablename__ = 'invoice_lines'

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoices.id'), nullable=False)
    baris = db.Column(db.Integer, nullable=False)  # Printed row number, may repeat
    line_order = db.Column(db.Integer, nullable=False)
    tka_id = db.Column(db.Integer, db.ForeignKey('tka_workers.id'), nullable=False)
    job_description_id = db.Column(db.Integer, db.ForeignKey('job_descriptions.id'), nullable=False)
    custom_job_name = db.Column(db.String(200), nullable=True)
    custom_job_description = db.Column(db.Text, nullable=True)
    custom_price = db.Column(db.Numeric(15, 2), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Numeric(15, 2), nullable=False)
    line_total = db.Column(db.Numeric(15, 2), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    tka_worker = db.relationship('TkaWorker', lazy='joined')
    job_description = db.relationship('JobDescription', lazy='joined')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_quantity_positive'),
        db.CheckConstraint('unit_price >= 0', name='check_unit_price_non_negative'),
        db.CheckConstraint('line_total >= 0', name='check_line_total_non_negative'),
        db.Index('idx_invoice_lines_invoice_order', 'invoice_id', 'line_order'),
    )

    def __repr__(self):
        return f'<InvoiceLine #{self.line_order} baris={self.baris} qty={self.quantity} price={self.unit_price} total={self.line_total}>'

    @property
    def job_name(self):
        if self.custom_job_name:
            return self.custom_job_name
        return self.job_description.job_name if self.job_description else None

    def to_dict(self):
        return {
            'id': self.id,
            'invoice_id': self.invoice_id,
            'baris': self.baris,
            'line_order': self.line_order,
            'tka_id': self.tka_id,
            'job_description_id': self.job_description_id,
            'custom_job_name': self.custom_job_name,
            'custom_job_description': self.custom_job_description,
            'custom_price': format_money(self.custom_price) if self.custom_price is not None else None,
            'quantity': self.quantity,
            'unit_price': format_money(self.unit_price),
            'line_total': format_money(self.line_total),
            'job_name': self.job_name,
            'tka_worker': {
                'nama': self.tka_worker.nama,
                'passport': self.tka_worker.passport,
            } if self.tka_worker else None,
        }


class InvoiceSequence(db.Model):
    """Per-month invoice number counter."""
    __tablename__ = 'invoice_sequences'

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)
    current_number = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('year', 'month', name='unique_sequence_year_month'),
        db.CheckConstraint('month >= 1 AND month <= 12', name='check_sequence_month_valid'),
        db.CheckConstraint('current_number >= 0', name='check_sequence_number_non_negative'),
    )

    def __repr__(self):
        return f'<InvoiceSequence {self.year}-{self.month:02d}: {self.current_number}>'


class AppSetting(db.Model):
    """Application settings stored as JSON-encoded values."""
    __tablename__ = 'app_settings'

    SETTING_TYPES = ('string', 'number', 'boolean', 'json')

    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(50), nullable=False, unique=True)
    setting_value = db.Column(db.Text, nullable=False)
    setting_type = db.Column(db.String(20), nullable=False, default='string')
    description = db.Column(db.String(200), nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    DEFAULT_SETTINGS = [
        {'setting_key': 'vat_percentage', 'value': 11.0, 'setting_type': 'number',
         'description': 'Default VAT percentage for invoices'},
        {'setting_key': 'company_info', 'value': {'name': 'Spirit of Services',
                                                  'address': 'Jakarta Office, Indonesia'},
         'setting_type': 'json', 'description': 'Issuer information printed on invoices'},
        {'setting_key': 'invoice_prefix', 'value': 'INV', 'setting_type': 'string',
         'description': 'Default prefix for invoice numbers'},
    ]

    def __repr__(self):
        return f'<AppSetting {self.setting_key}={self.setting_value}>'

    @property
    def value(self):
        return json.loads(self.setting_value)

    @classmethod
    def get_value(cls, key, default=None):
        setting = cls.query.filter_by(setting_key=key).first()
        if setting is None:
            return default
        return setting.value

    @classmethod
    def set_value(cls, key, value, setting_type=None, description=None):
        """Create or update a setting. The caller commits."""
        setting = cls.query.filter_by(setting_key=key).first()
        if setting is None:
            setting = cls(setting_key=key, setting_type=setting_type or 'string')
            db.session.add(setting)
        elif setting_type:
            setting.setting_type = setting_type
        if description is not None:
            setting.description = description
        setting.setting_value = json.dumps(value)
        return setting

    @classmethod
    def get_all(cls):
        return {setting.setting_key: setting.value
                for setting in cls.query.order_by(cls.setting_key).all()}

    @classmethod
    def get_default_vat_percentage(cls):
        """System-wide default VAT rate applied to newly created invoices."""
        value = cls.get_value('vat_percentage')
        if value is None:
            return Decimal(str(current_app.config['DEFAULT_VAT_PERCENTAGE']))
        return Decimal(str(value)).quantize(Decimal('0.01'))

    @classmethod
    def create_default_settings(cls):
        """Insert default settings that do not exist yet."""
        created = 0
        for setting_data in cls.DEFAULT_SETTINGS:
            existing = cls.query.filter_by(setting_key=setting_data['setting_key']).first()
            if not existing:
                db.session.add(cls(
                    setting_key=setting_data['setting_key'],
                    setting_value=json.dumps(setting_data['value']),
                    setting_type=setting_data['setting_type'],
                    description=setting_data['description']
                ))
                created += 1

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return created
