import csv
import io
from datetime import date
from decimal import Decimal

from flask import Blueprint, Response, jsonify, request
from sqlalchemy import func

from tka_invoice.forms import InvoiceSearchForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import format_money, Invoice
from tka_invoice.routes.invoices import filter_invoices
from tka_invoice.routes.utils import form_errors_response, paginate, parse_pagination

logger = get_logger(__name__)

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')

MAX_EXPORT_ROWS = 5000

EXPORT_COLUMNS = (
    ('Invoice Number', 'invoice_number'),
    ('Company Name', 'company_name'),
    ('Company NPWP', 'company_npwp'),
    ('Invoice Date', 'invoice_date'),
    ('Status', 'status'),
    ('Subtotal', 'subtotal'),
    ('VAT %', 'vat_percentage'),
    ('VAT Amount', 'vat_amount'),
    ('Total Amount', 'total_amount'),
    ('Line Count', 'line_count'),
    ('Notes', 'notes'),
)


def _report_query():
    """Validated filters from the query string, as (query, None) or (None, error response)."""
    form = InvoiceSearchForm(formdata=request.args)
    if not form.validate():
        return None, form_errors_response(form)
    return filter_invoices(form), None


def summarize(query):
    """
    Sum the stored aggregates of the filtered invoices.

    Totals are read from the invoices as persisted, never recomputed from
    lines. Cancelled invoices appear under by_status but are left out of the
    overall sums, matching Company.total_revenue.
    """
    rows = (query.order_by(None)
            .with_entities(Invoice.status,
                           func.count(Invoice.id),
                           func.sum(Invoice.subtotal),
                           func.sum(Invoice.vat_amount),
                           func.sum(Invoice.total_amount))
            .group_by(Invoice.status)
            .all())

    by_status = {}
    subtotal = vat_amount = total_amount = Decimal('0.00')
    invoice_count = 0
    for status, count, row_subtotal, row_vat, row_total in rows:
        row_total = Decimal(str(row_total or 0))
        by_status[status] = {'count': count, 'total_amount': format_money(row_total)}
        if status == 'cancelled':
            continue
        invoice_count += count
        subtotal += Decimal(str(row_subtotal or 0))
        vat_amount += Decimal(str(row_vat or 0))
        total_amount += row_total

    def status_total(*statuses):
        return sum((Decimal(by_status[status]['total_amount']) for status in statuses if status in by_status),
                   Decimal('0.00'))

    return {
        'total_invoices': invoice_count,
        'subtotal': format_money(subtotal),
        'vat_amount': format_money(vat_amount),
        'total_amount': format_money(total_amount),
        'paid_amount': format_money(status_total('paid')),
        'outstanding_amount': format_money(status_total('draft', 'finalized')),
        'by_status': by_status
    }


@reports_bp.route('/invoices', methods=['GET'])
def invoice_report():
    """Filtered invoice list with a summary of the stored totals."""
    query, invalid = _report_query()
    if invalid:
        return invalid

    limit, offset = parse_pagination()
    body = paginate(query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc()), limit, offset)
    body['summary'] = summarize(query)
    return jsonify(body)


@reports_bp.route('/invoices/export', methods=['GET'])
def export_invoice_report():
    """The filtered invoices as a CSV download."""
    query, invalid = _report_query()
    if invalid:
        return invalid

    invoices = (query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
                .limit(MAX_EXPORT_ROWS)
                .all())

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    for invoice in invoices:
        row = invoice.to_dict()
        row['company_npwp'] = invoice.company.npwp
        row['notes'] = invoice.notes or ''
        writer.writerow([row[key] for _, key in EXPORT_COLUMNS])

    logger.info(f"Exported {len(invoices)} invoices to CSV")
    filename = f'invoice-report-{date.today().isoformat()}.csv'
    return Response(output.getvalue(), mimetype='text/csv',
                    headers={'Content-Disposition': f'attachment; filename="{filename}"'})
