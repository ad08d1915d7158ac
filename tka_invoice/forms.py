from decimal import Decimal

from flask_wtf import FlaskForm
from wtforms import (Form, StringField, TextAreaField, DecimalField, DateField, SelectField, FieldList,
                     FormField, IntegerField, BooleanField)
from wtforms.validators import (InputRequired, Email, Optional, NumberRange, Length, Regexp, StopValidation,
                                ValidationError)

from tka_invoice.models import db, BankAccount, Company, TkaFamilyMember, TkaWorker

MAX_PRICE = Decimal('999999999.99')
MAX_QUANTITY = 9999
MAX_LINES = 100
MAX_IMPORT_INVOICES = 100
MAX_IMPORT_LINES = 50


def validate_money_places(form, field):
    """Reject NaN, infinities and amounts with more than two decimal places."""
    if field.data is None:
        return
    if not field.data.is_finite():
        raise StopValidation('Amount must be a finite number')
    if field.data.as_tuple().exponent < -2:
        raise ValidationError('Amount can have at most 2 decimal places')


class JsonForm(FlaskForm):
    """Base form for JSON request bodies; CSRF is enforced app-wide by CSRFProtect."""

    class Meta:
        csrf = False


class CompanyForm(JsonForm):
    """Form for creating and editing client companies."""
    company_name = StringField('Company name', validators=[
        InputRequired(message='Company name is required'),
        Length(min=2, max=200, message='Company name must be 2-200 characters')
    ])
    npwp = StringField('NPWP', validators=[InputRequired(message='NPWP is required'), Length(max=20)])
    idtku = StringField('IDTKU', validators=[InputRequired(message='IDTKU is required'), Length(max=20)])
    address = TextAreaField('Address', validators=[InputRequired(message='Address is required'), Length(max=1000)])
    contact_phone = StringField('Phone', validators=[Optional(), Length(max=20)])
    contact_email = StringField('Email', validators=[Optional(), Email(message='Invalid email address'),
                                                     Length(max=100)])
    is_active = BooleanField('Active', default=True)

    def validate_npwp(self, field):
        """Ensure the NPWP is unique when creating or editing."""
        company_id = getattr(self, '_company_id', None)
        existing = Company.query.filter_by(npwp=field.data).first()
        if existing and existing.id != company_id:
            raise ValidationError(f'NPWP "{field.data}" is already registered')

    def validate_idtku(self, field):
        """Ensure the IDTKU is unique when creating or editing."""
        company_id = getattr(self, '_company_id', None)
        existing = Company.query.filter_by(idtku=field.data).first()
        if existing and existing.id != company_id:
            raise ValidationError(f'IDTKU "{field.data}" is already registered')


class JobDescriptionForm(JsonForm):
    """Form for a company's priced job catalog entries."""
    company_id = IntegerField('Company', validators=[InputRequired(message='Company is required')])
    job_name = StringField('Job name', validators=[InputRequired(message='Job name is required'), Length(max=200)])
    job_description = TextAreaField('Description', validators=[
        InputRequired(message='Job description is required'), Length(max=1000)
    ])
    price = DecimalField('Price', validators=[
        InputRequired(message='Price is required'),
        validate_money_places,
        NumberRange(min=0, max=MAX_PRICE, message='Price must be between 0 and 999,999,999.99')
    ])
    is_active = BooleanField('Active', default=True)
    sort_order = IntegerField('Sort order', validators=[Optional(), NumberRange(min=0)], default=0)

    def validate_company_id(self, field):
        company = db.session.get(Company, field.data)
        if company is None or not company.is_active:
            raise ValidationError('Company not found')


class TkaWorkerForm(JsonForm):
    """Form for foreign worker records."""
    nama = StringField('Name', validators=[
        InputRequired(message='Name is required'),
        Length(min=2, max=100, message='Name must be 2-100 characters')
    ])
    passport = StringField('Passport', validators=[
        InputRequired(message='Passport number is required'),
        Length(min=6, max=20, message='Passport number must be 6-20 characters')
    ])
    divisi = StringField('Division', validators=[Optional(), Length(max=100)])
    jenis_kelamin = SelectField('Gender', choices=[(gender, gender) for gender in TkaWorker.GENDERS],
                                default='Laki-laki')
    is_active = BooleanField('Active', default=True)

    def validate_passport(self, field):
        """Ensure the passport number is unique when creating or editing."""
        worker_id = getattr(self, '_worker_id', None)
        existing = TkaWorker.query.filter_by(passport=field.data).first()
        if existing and existing.id != worker_id:
            raise ValidationError(f'Passport "{field.data}" is already registered')
        if TkaFamilyMember.query.filter_by(passport=field.data).first():
            raise ValidationError(f'Passport "{field.data}" is already registered as a family member')


class TkaFamilyMemberForm(JsonForm):
    """Form for a worker's family members; a worker has at most one spouse."""
    nama = StringField('Name', validators=[
        InputRequired(message='Name is required'),
        Length(min=2, max=100, message='Name must be 2-100 characters')
    ])
    passport = StringField('Passport', validators=[
        InputRequired(message='Passport number is required'),
        Length(min=3, max=20, message='Passport number must be 3-20 characters')
    ])
    jenis_kelamin = SelectField('Gender', choices=[(gender, gender) for gender in TkaWorker.GENDERS],
                                default='Laki-laki')
    relationship = SelectField('Relationship', choices=[
        ('spouse', 'Spouse'),
        ('parent', 'Parent'),
        ('child', 'Child')
    ], validators=[InputRequired(message='Relationship is required')])
    is_active = BooleanField('Active', default=True)

    def validate_passport(self, field):
        """Passports are unique across workers and family members."""
        member_id = getattr(self, '_member_id', None)
        existing = TkaFamilyMember.query.filter_by(passport=field.data).first()
        if existing and existing.id != member_id:
            raise ValidationError(f'Passport "{field.data}" is already registered as a family member')
        if TkaWorker.query.filter_by(passport=field.data).first():
            raise ValidationError(f'Passport "{field.data}" is already registered as a TKA worker')

    def validate_relationship(self, field):
        if field.data != 'spouse':
            return
        spouse = TkaFamilyMember.query.filter_by(tka_id=getattr(self, '_worker_id', None),
                                                 relationship='spouse', is_active=True).first()
        if spouse and spouse.id != getattr(self, '_member_id', None):
            raise ValidationError('TKA worker already has a spouse registered')


class BankAccountForm(JsonForm):
    """Form for bank accounts printed on invoices."""
    bank_name = StringField('Bank', validators=[InputRequired(message='Bank name is required'), Length(max=100)])
    account_number = StringField('Account number', validators=[
        InputRequired(message='Account number is required'), Length(max=50)
    ])
    account_name = StringField('Account name', validators=[
        InputRequired(message='Account name is required'), Length(max=100)
    ])
    is_default = BooleanField('Default')
    is_active = BooleanField('Active', default=True)
    sort_order = IntegerField('Sort order', validators=[Optional(), NumberRange(min=0)], default=0)


class InvoiceLineForm(Form):
    """One invoice line; also used on its own for POST /lines."""
    baris = IntegerField('Row', validators=[Optional(), NumberRange(min=1, message='Row number must be positive')])
    tka_id = IntegerField('TKA worker', validators=[InputRequired(message='TKA worker is required')])
    job_description_id = IntegerField('Job description', validators=[
        InputRequired(message='Job description is required')
    ])
    custom_job_name = StringField('Custom job name', validators=[Optional(), Length(max=200)])
    custom_job_description = TextAreaField('Custom job description', validators=[Optional(), Length(max=1000)])
    custom_price = DecimalField('Custom price', validators=[
        Optional(),
        validate_money_places,
        NumberRange(min=0, max=MAX_PRICE, message='Price must be between 0 and 999,999,999.99')
    ])
    quantity = IntegerField('Quantity', validators=[
        InputRequired(message='Quantity is required'),
        NumberRange(min=1, max=MAX_QUANTITY, message='Quantity must be between 1 and 9999')
    ])


class InvoiceForm(JsonForm):
    """Form for creating invoices with their lines."""
    company_id = IntegerField('Company', validators=[InputRequired(message='Company is required')])
    invoice_date = DateField('Invoice date', format='%Y-%m-%d',
                             validators=[InputRequired(message='Invoice date is required')])
    notes = TextAreaField('Notes', validators=[Optional(), Length(max=1000)])
    bank_account_id = IntegerField('Bank account', validators=[Optional()])
    vat_percentage = DecimalField('VAT (%)', validators=[
        Optional(),
        validate_money_places,
        NumberRange(min=0, max=100, message='VAT percentage must be between 0 and 100')
    ])
    lines = FieldList(FormField(InvoiceLineForm), min_entries=0, validators=[
        Length(min=1, max=MAX_LINES, message='An invoice needs between 1 and 100 lines')
    ])

    def validate_company_id(self, field):
        """An existing invoice may keep a company that has since been deactivated."""
        if field.data is not None and field.data == getattr(self, '_current_company_id', None):
            return
        company = db.session.get(Company, field.data)
        if company is None or not company.is_active:
            raise ValidationError('Company not found')

    def validate_bank_account_id(self, field):
        if field.data is not None and db.session.get(BankAccount, field.data) is None:
            raise ValidationError('Bank account not found')

    def line_data(self):
        """Line dictionaries in submission order."""
        return [entry.form.data for entry in self.lines.entries]


class InvoiceUpdateForm(InvoiceForm):
    """Form for updating an invoice header; lines are optional and may be emptied."""
    lines = FieldList(FormField(InvoiceLineForm), min_entries=0, validators=[
        Length(max=MAX_LINES, message='An invoice can have at most 100 lines')
    ])


class InvoiceLinesForm(JsonForm):
    """Full replacement of an invoice's lines."""
    lines = FieldList(FormField(InvoiceLineForm), min_entries=0, validators=[
        Length(max=MAX_LINES, message='An invoice can have at most 100 lines')
    ])

    def line_data(self):
        return [entry.form.data for entry in self.lines.entries]


class ImportLineForm(Form):
    """Imported line; worker and job are named instead of referenced by ID."""
    tka_name = StringField('TKA name', validators=[InputRequired(message='TKA name is required'), Length(max=100)])
    tka_passport = StringField('TKA passport', validators=[Optional(), Length(max=20)])
    job_name = StringField('Job name', validators=[InputRequired(message='Job name is required'), Length(max=200)])
    custom_job_name = StringField('Custom job name', validators=[Optional(), Length(max=200)])
    custom_price = DecimalField('Custom price', validators=[
        Optional(),
        validate_money_places,
        NumberRange(min=0, max=MAX_PRICE, message='Price must be between 0 and 999,999,999.99')
    ])
    quantity = IntegerField('Quantity', validators=[
        Optional(),
        NumberRange(min=1, max=MAX_QUANTITY, message='Quantity must be between 1 and 9999')
    ])
    baris = IntegerField('Row', validators=[Optional(), NumberRange(min=1, message='Row number must be positive')])


class InvoiceImportForm(Form):
    """One invoice of an import batch."""
    invoice_number = StringField('Invoice number', validators=[Optional(), Length(max=50)])
    company_name = StringField('Company name', validators=[
        InputRequired(message='Company name is required'), Length(max=200)
    ])
    company_npwp = StringField('Company NPWP', validators=[Optional(), Length(max=20)])
    invoice_date = DateField('Invoice date', format='%Y-%m-%d',
                             validators=[InputRequired(message='Invoice date is required')])
    notes = TextAreaField('Notes', validators=[Optional(), Length(max=1000)])
    bank_account = StringField('Bank account', validators=[Optional(), Length(max=100)])
    lines = FieldList(FormField(ImportLineForm), min_entries=0, validators=[
        Length(min=1, max=MAX_IMPORT_LINES, message='An imported invoice needs between 1 and 50 lines')
    ])


class InvoiceStatusForm(JsonForm):
    status = SelectField('Status', choices=[
        ('draft', 'Draft'),
        ('finalized', 'Finalized'),
        ('paid', 'Paid'),
        ('cancelled', 'Cancelled')
    ], validators=[InputRequired(message='Status is required')])


class InvoiceSearchForm(JsonForm):
    """Query-string filters for the invoice list."""
    status = SelectField('Status', choices=[
        ('', 'All'),
        ('draft', 'Draft'),
        ('finalized', 'Finalized'),
        ('paid', 'Paid'),
        ('cancelled', 'Cancelled')
    ], default='', validators=[Optional()])
    company_id = IntegerField('Company', validators=[Optional()])
    date_from = DateField('From', format='%Y-%m-%d', validators=[Optional()])
    date_to = DateField('To', format='%Y-%m-%d', validators=[Optional()])
    query = StringField('Search', validators=[Optional(), Length(max=100)])


class PrintForm(JsonForm):
    copies = IntegerField('Copies', validators=[
        Optional(), NumberRange(min=1, max=10, message='Copies must be between 1 and 10')
    ], default=1)


class SettingsForm(JsonForm):
    """System-wide defaults; changing them never touches existing invoices."""
    vat_percentage = DecimalField('Default VAT (%)', validators=[
        Optional(),
        validate_money_places,
        NumberRange(min=0, max=100, message='VAT percentage must be between 0 and 100')
    ])
    invoice_prefix = StringField('Invoice prefix', validators=[
        Optional(),
        Length(min=1, max=10),
        Regexp(r'^[A-Z]+$', message='Prefix must be uppercase letters only')
    ])
