import re
from datetime import date, datetime

from flask import current_app

from tka_invoice.models import db, AppSetting, Invoice, InvoiceSequence

INVOICE_NUMBER_PATTERN = re.compile(r'^[A-Z]+-\d{2}-\d{2}-\d{3,}$')


def get_invoice_prefix():
    """Invoice number prefix from settings, falling back to configuration."""
    prefix = AppSetting.get_value('invoice_prefix')
    return prefix or current_app.config['INVOICE_NUMBER_PREFIX']


def format_invoice_number(prefix, year, month, number):
    return f"{prefix}-{year % 100:02d}-{month:02d}-{number:03d}"


def _get_sequence(year, month, for_update=False):
    query = InvoiceSequence.query.filter_by(year=year, month=month)
    if for_update:
        query = query.with_for_update()
    return query.first()


def generate_invoice_number(on_date=None):
    """
    Consume the next invoice number for the month of the given date.

    Args:
        on_date: Date whose year/month selects the sequence. Defaults to today.

    Returns:
        str: Invoice number in format PREFIX-YY-MM-NNN

    The sequence row is updated in the current session; the caller commits
    together with the invoice it numbers.
    """
    if on_date is None:
        on_date = date.today()

    sequence = _get_sequence(on_date.year, on_date.month, for_update=True)
    if sequence is None:
        sequence = InvoiceSequence(year=on_date.year, month=on_date.month, current_number=0)
        db.session.add(sequence)

    sequence.current_number += 1
    sequence.updated_at = datetime.utcnow()

    number = format_invoice_number(get_invoice_prefix(), on_date.year, on_date.month,
                                   sequence.current_number)

    # Skip numbers already used by invoices imported with an explicit number
    while not is_invoice_number_available(number):
        sequence.current_number += 1
        number = format_invoice_number(get_invoice_prefix(), on_date.year, on_date.month,
                                       sequence.current_number)

    return number


def preview_invoice_number(on_date=None):
    """Return the number generate_invoice_number would hand out, without consuming it."""
    if on_date is None:
        on_date = date.today()

    sequence = _get_sequence(on_date.year, on_date.month)
    next_number = (sequence.current_number if sequence else 0) + 1
    return format_invoice_number(get_invoice_prefix(), on_date.year, on_date.month, next_number)


def is_invoice_number_available(number):
    """
    Check if an invoice number is available.

    Args:
        number: Invoice number to check

    Returns:
        bool: True if available, False if taken
    """
    existing = Invoice.query.filter_by(invoice_number=number).first()
    return existing is None


def validate_invoice_number_format(number):
    """
    Validate that invoice number follows the PREFIX-YY-MM-NNN format.

    Args:
        number: Invoice number to validate

    Returns:
        bool: True if format is valid, False otherwise
    """
    if not number or not isinstance(number, str):
        return False
    return INVOICE_NUMBER_PATTERN.match(number) is not None
