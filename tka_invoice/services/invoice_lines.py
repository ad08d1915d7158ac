"""
Invoice line mutations.

Every handler here changes lines and re-applies the invoice totals inside
the current SQLAlchemy session. Nothing is committed: the route commits on
success and rolls back on any exception, so lines and aggregate always move
together.
"""
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, AppSetting, BankAccount, Invoice, InvoiceLine, JobDescription, TkaWorker
from tka_invoice.services.numbering import generate_invoice_number
from tka_invoice.services.totals import apply_invoice_totals, calculate_line_total

logger = get_logger(__name__)


class InvoiceLineError(Exception):
    """Base error for line mutations; aborts the enclosing transaction."""
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvoiceNotEditable(InvoiceLineError):
    status_code = 409


class JobDescriptionNotFound(InvoiceLineError):
    status_code = 404


class TkaWorkerNotFound(InvoiceLineError):
    status_code = 404


class TooManyLines(InvoiceLineError):
    status_code = 400


def load_invoice_for_update(invoice_id):
    """Load an invoice with a row lock (SELECT ... FOR UPDATE where supported)."""
    return db.session.get(Invoice, invoice_id, with_for_update=True)


def ensure_editable(invoice):
    if not invoice.is_editable:
        raise InvoiceNotEditable(
            f'Invoice {invoice.invoice_number} is {invoice.status} and can no longer be edited'
        )


def _check_line_limit(count):
    max_lines = current_app.config['MAX_INVOICE_LINES']
    if count > max_lines:
        raise TooManyLines(f'An invoice can have at most {max_lines} lines')


def resolve_unit_price(line_data):
    """
    Resolve the unit price for a line.

    An explicit custom_price (including 0) wins; otherwise the price of the
    active job description is used.
    """
    job_description_id = line_data.get('job_description_id')

    custom_price = line_data.get('custom_price')
    if custom_price is not None:
        if not job_description_id or db.session.get(JobDescription, job_description_id) is None:
            raise JobDescriptionNotFound(f'Job description not found: {job_description_id}')
        return Decimal(str(custom_price))

    job = JobDescription.get_active(job_description_id) if job_description_id else None
    if job is None:
        raise JobDescriptionNotFound(f'Job description not found: {job_description_id}')
    return Decimal(str(job.price))


def build_line(line_data, line_order):
    """Create an unsaved InvoiceLine with its resolved price and derived total."""
    tka_id = line_data.get('tka_id')
    worker = db.session.get(TkaWorker, tka_id) if tka_id else None
    if worker is None:
        raise TkaWorkerNotFound(f'TKA worker not found: {tka_id}')

    unit_price = resolve_unit_price(line_data)
    quantity = line_data['quantity']
    custom_price = line_data.get('custom_price')

    return InvoiceLine(
        baris=line_data.get('baris') or line_order,
        line_order=line_order,
        tka_id=worker.id,
        job_description_id=line_data['job_description_id'],
        custom_job_name=line_data.get('custom_job_name') or None,
        custom_job_description=line_data.get('custom_job_description') or None,
        custom_price=Decimal(str(custom_price)) if custom_price is not None else None,
        quantity=quantity,
        unit_price=unit_price,
        line_total=calculate_line_total(quantity, unit_price)
    )


def recalculate_invoice(invoice):
    """Flush pending line changes, re-read the lines and store the aggregate."""
    db.session.flush()
    db.session.refresh(invoice, ['lines'])
    totals = apply_invoice_totals(invoice)
    db.session.flush()
    logger.debug(f"Invoice {invoice.invoice_number} totals: subtotal={totals['subtotal']} "
                 f"vat={totals['vat_amount']} total={totals['total']}")
    return totals


def add_line(invoice, line_data):
    """
    Append one line to an invoice and recompute its totals.

    Args:
        invoice: Invoice object (draft)
        line_data: dict with tka_id, job_description_id, quantity and optional
            baris, custom_job_name, custom_job_description, custom_price

    Returns:
        InvoiceLine: the new line
    """
    ensure_editable(invoice)

    current_count = InvoiceLine.query.filter_by(invoice_id=invoice.id).count()
    _check_line_limit(current_count + 1)

    max_order = (db.session.query(func.coalesce(func.max(InvoiceLine.line_order), 0))
                 .filter(InvoiceLine.invoice_id == invoice.id)
                 .scalar())

    line = build_line(line_data, max_order + 1)
    invoice.lines.append(line)

    recalculate_invoice(invoice)
    logger.info(f"Added line {line.line_order} to invoice {invoice.invoice_number}")
    return line


def replace_lines(invoice, lines_data):
    """
    Replace every line of an invoice, preserving the given order.

    An empty list removes all lines and zeroes the aggregate.

    Returns:
        list: the new InvoiceLine objects
    """
    ensure_editable(invoice)
    _check_line_limit(len(lines_data))

    invoice.lines.clear()
    db.session.flush()

    new_lines = []
    for position, line_data in enumerate(lines_data, start=1):
        line = build_line(line_data, position)
        invoice.lines.append(line)
        new_lines.append(line)

    recalculate_invoice(invoice)
    logger.info(f"Replaced lines of invoice {invoice.invoice_number} with {len(new_lines)} lines")
    return new_lines


def delete_line(invoice, line):
    """Remove one line, close the gap in line_order and recompute totals."""
    ensure_editable(invoice)
    if line.invoice_id != invoice.id:
        raise InvoiceLineError(f'Line {line.id} does not belong to invoice {invoice.invoice_number}',
                               status_code=404)

    removed_order = line.line_order
    invoice.lines.remove(line)
    db.session.flush()

    for position, remaining in enumerate(sorted(invoice.lines, key=lambda l: l.line_order), start=1):
        remaining.line_order = position

    recalculate_invoice(invoice)
    logger.info(f"Deleted line {removed_order} from invoice {invoice.invoice_number}")


HEADER_FIELDS = ('company_id', 'invoice_date', 'notes', 'bank_account_id')


def update_invoice(invoice, header, lines_data=None):
    """
    Update a draft invoice's header and optionally replace its lines.

    Args:
        invoice: Invoice object (draft)
        header: dict of header fields; vat_percentage may be included
        lines_data: new lines, or None to keep the current ones

    The aggregate is recomputed in both cases so a changed VAT rate takes
    effect immediately.
    """
    ensure_editable(invoice)

    for field in HEADER_FIELDS:
        if field in header:
            setattr(invoice, field, header[field])
    if header.get('vat_percentage') is not None:
        invoice.vat_percentage = Decimal(str(header['vat_percentage']))

    if lines_data is not None:
        replace_lines(invoice, lines_data)
    else:
        recalculate_invoice(invoice)

    logger.info(f"Invoice {invoice.invoice_number} updated")
    return invoice


def create_invoice(company_id, invoice_date, lines_data, notes=None, bank_account_id=None,
                   vat_percentage=None, invoice_number=None):
    """
    Create a draft invoice with its lines and aggregate.

    The invoice takes the current default VAT rate unless one is given; that
    rate is stored on the invoice and used for every later recomputation.
    A number is generated unless the caller supplies an already checked one.
    """
    if vat_percentage is None:
        vat_percentage = AppSetting.get_default_vat_percentage()

    if bank_account_id is None:
        default_account = BankAccount.get_default()
        bank_account_id = default_account.id if default_account else None

    invoice = Invoice(
        invoice_number=invoice_number or generate_invoice_number(),
        company_id=company_id,
        invoice_date=invoice_date,
        notes=notes or None,
        bank_account_id=bank_account_id,
        vat_percentage=Decimal(str(vat_percentage)),
        status='draft',
        subtotal=Decimal('0.00'),
        vat_amount=Decimal('0.00'),
        total_amount=Decimal('0.00')
    )
    db.session.add(invoice)
    db.session.flush()  # Get invoice ID

    replace_lines(invoice, lines_data)
    return invoice


def duplicate_invoice(original):
    """
    Copy an invoice into a new draft dated today.

    Lines keep their stored unit prices and the copy keeps the original's
    VAT rate, so the new aggregate matches the original's.
    """
    duplicate = Invoice(
        invoice_number=generate_invoice_number(),
        company_id=original.company_id,
        invoice_date=date.today(),
        notes=original.notes,
        bank_account_id=original.bank_account_id,
        vat_percentage=original.vat_percentage,
        status='draft',
        subtotal=Decimal('0.00'),
        vat_amount=Decimal('0.00'),
        total_amount=Decimal('0.00')
    )
    db.session.add(duplicate)
    db.session.flush()

    for original_line in original.lines:
        duplicate.lines.append(InvoiceLine(
            baris=original_line.baris,
            line_order=original_line.line_order,
            tka_id=original_line.tka_id,
            job_description_id=original_line.job_description_id,
            custom_job_name=original_line.custom_job_name,
            custom_job_description=original_line.custom_job_description,
            custom_price=original_line.custom_price,
            quantity=original_line.quantity,
            unit_price=original_line.unit_price,
            line_total=calculate_line_total(original_line.quantity, original_line.unit_price)
        ))

    recalculate_invoice(duplicate)
    logger.info(f"Invoice {original.invoice_number} duplicated as {duplicate.invoice_number}")
    return duplicate
