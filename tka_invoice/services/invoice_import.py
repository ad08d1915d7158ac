"""
Batch invoice import.

Import rows name their company, workers and jobs instead of referencing IDs.
Each row is matched against the active catalog and then built through
create_invoice, so imported invoices are priced and totalled exactly like
invoices created through the API. Nothing is committed here; the route runs
every row inside its own savepoint.
"""
from sqlalchemy import func

from tka_invoice.logging_config import get_logger
from tka_invoice.models import BankAccount, Company, JobDescription, TkaWorker
from tka_invoice.services.invoice_lines import InvoiceLineError, create_invoice
from tka_invoice.services.numbering import is_invoice_number_available, validate_invoice_number_format

logger = get_logger(__name__)


class ImportRowError(InvoiceLineError):
    """An import row that cannot be matched or numbered."""
    status_code = 400


def _same_text(column, value):
    return func.lower(column) == func.lower(value)


def find_company(company_name, npwp=None):
    """Active company by NPWP, falling back to a case-insensitive name match."""
    query = Company.query.filter(Company.is_active.is_(True))
    if npwp:
        company = query.filter(Company.npwp == npwp).first()
        if company:
            return company
    return query.filter(_same_text(Company.company_name, company_name)).order_by(Company.id).first()


def find_worker(nama, passport=None):
    """Active worker by passport, falling back to a case-insensitive name match."""
    query = TkaWorker.query.filter(TkaWorker.is_active.is_(True))
    if passport:
        worker = query.filter(TkaWorker.passport == passport).first()
        if worker:
            return worker
    return query.filter(_same_text(TkaWorker.nama, nama)).order_by(TkaWorker.id).first()


def find_job(company, job_name):
    """Active job of the company with the given name."""
    return (JobDescription.query
            .filter(JobDescription.company_id == company.id,
                    JobDescription.is_active.is_(True),
                    _same_text(JobDescription.job_name, job_name))
            .order_by(JobDescription.sort_order, JobDescription.id)
            .first())


def find_bank_account(name):
    """Active bank account whose bank or account name matches, or None."""
    if not name:
        return None
    return (BankAccount.query
            .filter(BankAccount.is_active.is_(True))
            .filter(_same_text(BankAccount.bank_name, name) | _same_text(BankAccount.account_name, name))
            .order_by(BankAccount.is_default.desc(), BankAccount.id)
            .first())


def check_invoice_number(invoice_number):
    """Reject a supplied invoice number that is malformed or already used."""
    if not validate_invoice_number_format(invoice_number):
        raise ImportRowError(f'Invalid invoice number format: {invoice_number} (expected PREFIX-YY-MM-NNN)')
    if not is_invoice_number_available(invoice_number):
        raise ImportRowError(f'Invoice number already exists: {invoice_number}')


def resolve_import_lines(company, lines):
    """Turn named import lines into line data for the line handlers."""
    lines_data = []
    for position, line in enumerate(lines, start=1):
        worker = find_worker(line['tka_name'], line.get('tka_passport'))
        if worker is None:
            raise ImportRowError(f"TKA worker not found: {line['tka_name']}")

        job = find_job(company, line['job_name'])
        if job is None:
            raise ImportRowError(f"Job description not found: {line['job_name']} "
                                 f"for company {company.company_name}")

        lines_data.append({
            'tka_id': worker.id,
            'job_description_id': job.id,
            'custom_job_name': line.get('custom_job_name'),
            'custom_price': line.get('custom_price'),
            'quantity': line.get('quantity') or 1,
            'baris': line.get('baris') or position,
        })
    return lines_data


def import_invoice(row):
    """
    Create one draft invoice from a validated import row.

    Args:
        row: dict with company_name, invoice_date and lines, plus optional
            company_npwp, invoice_number, notes and bank_account

    Returns:
        Invoice: the new draft, flushed but not committed

    Raises:
        ImportRowError: when the company, a worker, a job or the supplied
            invoice number does not check out
    """
    company = find_company(row['company_name'], row.get('company_npwp'))
    if company is None:
        raise ImportRowError(f"Company not found: {row['company_name']}")

    invoice_number = row.get('invoice_number') or None
    if invoice_number:
        check_invoice_number(invoice_number)

    lines_data = resolve_import_lines(company, row['lines'])
    bank_account = find_bank_account(row.get('bank_account'))

    invoice = create_invoice(
        company_id=company.id,
        invoice_date=row['invoice_date'],
        lines_data=lines_data,
        notes=row.get('notes'),
        bank_account_id=bank_account.id if bank_account else None,
        invoice_number=invoice_number
    )
    logger.info(f"Imported invoice {invoice.invoice_number} for {company.company_name} "
                f"with {len(lines_data)} lines")
    return invoice
