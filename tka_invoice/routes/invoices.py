from datetime import datetime
from decimal import Decimal

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from tka_invoice.forms import (MAX_IMPORT_INVOICES, MAX_IMPORT_LINES, InvoiceForm, InvoiceImportForm,
                               InvoiceLineForm, InvoiceLinesForm, InvoiceSearchForm, InvoiceStatusForm,
                               InvoiceUpdateForm, PrintForm)
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, format_money, AppSetting, BankAccount, Company, Invoice, InvoiceLine
from tka_invoice.routes.utils import (error_response, form_errors_response, get_json_payload,
                                      json_to_formdata, paginated_response, parse_pagination)
from tka_invoice.services.invoice_import import import_invoice
from tka_invoice.services.invoice_lines import (InvoiceLineError, add_line, create_invoice, delete_line,
                                                duplicate_invoice, load_invoice_for_update, replace_lines,
                                                update_invoice)
from tka_invoice.services.numbering import preview_invoice_number
from tka_invoice.services.status_transitions import InvoiceStatusTransition, StatusTransitionError
from tka_invoice.services.terbilang import amount_to_words
from tka_invoice.services.totals import InvalidTotalsInput

logger = get_logger(__name__)

invoices_bp = Blueprint('invoices', __name__, url_prefix='/api/invoices')

DOMAIN_ERRORS = (InvoiceLineError, InvalidTotalsInput, StatusTransitionError)


def _domain_error_response(error, invoice_id=None):
    db.session.rollback()
    message = getattr(error, 'message', None) or str(error)
    logger.warning(f"Invoice {invoice_id if invoice_id else '(new)'} rejected: {message}")
    return error_response(message, error.status_code)


def _totals(invoice):
    return {
        'subtotal': format_money(invoice.subtotal),
        'vat_percentage': format_money(invoice.vat_percentage),
        'vat_amount': format_money(invoice.vat_amount),
        'total_amount': format_money(invoice.total_amount),
    }


def _invoice_detail(invoice):
    data = invoice.to_dict(include_lines=True)
    data['valid_transitions'] = InvoiceStatusTransition.get_valid_transitions(invoice.status)
    return data


def _locked_invoice_or_404(invoice_id):
    invoice = load_invoice_for_update(invoice_id)
    if invoice is None:
        return None, error_response('Invoice not found', 404)
    return invoice, None


def filter_invoices(form):
    """Invoice query narrowed by a validated InvoiceSearchForm."""
    query = Invoice.query.join(Company)

    if form.status.data:
        query = query.filter(Invoice.status == form.status.data)
    if form.company_id.data:
        query = query.filter(Invoice.company_id == form.company_id.data)
    if form.date_from.data:
        query = query.filter(Invoice.invoice_date >= form.date_from.data)
    if form.date_to.data:
        query = query.filter(Invoice.invoice_date <= form.date_to.data)
    if form.query.data:
        pattern = f'%{form.query.data.strip()}%'
        query = query.filter(or_(
            Invoice.invoice_number.ilike(pattern),
            Company.company_name.ilike(pattern),
            Invoice.notes.ilike(pattern)
        ))
    return query


@invoices_bp.route('', methods=['GET'])
def list_invoices():
    """Invoices with status, company, date range and text filters."""
    form = InvoiceSearchForm(formdata=request.args)
    if not form.validate():
        return form_errors_response(form)

    limit, offset = parse_pagination()
    query = filter_invoices(form).order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
    return paginated_response(query, limit, offset)


@invoices_bp.route('', methods=['POST'])
def create_invoice_route():
    """Create a draft invoice; number and VAT rate are assigned here."""
    payload = get_json_payload()
    form = InvoiceForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    try:
        invoice = create_invoice(
            company_id=form.company_id.data,
            invoice_date=form.invoice_date.data,
            lines_data=form.line_data(),
            notes=form.notes.data,
            bank_account_id=form.bank_account_id.data,
            vat_percentage=form.vat_percentage.data
        )
        db.session.commit()
        logger.info(f"Invoice {invoice.invoice_number} created with {invoice.line_count} lines, "
                    f"total {invoice.total_amount}")
        return jsonify({'success': True, 'message': 'Invoice created', 'data': _invoice_detail(invoice)}), 201
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e)
    except Exception as e:
        logger.error(f"Error creating invoice: {str(e)}")
        db.session.rollback()
        return error_response('Could not create invoice', 500)


@invoices_bp.route('/number', methods=['GET'])
def next_invoice_number():
    """Preview the next invoice number without consuming it."""
    return jsonify({'success': True, 'invoice_number': preview_invoice_number()})


@invoices_bp.route('/import', methods=['POST'])
def import_invoices_route():
    """
    Import a batch of draft invoices whose catalog entries are given by name.

    Every row runs in its own savepoint: a row that fails validation or
    matching is reported in `errors` and leaves nothing behind, while the
    other rows are committed together at the end.
    """
    rows = get_json_payload().get('invoices')
    if not isinstance(rows, list) or not rows:
        return error_response('invoices must be a non-empty list', 400)
    if len(rows) > MAX_IMPORT_INVOICES:
        return error_response(f'At most {MAX_IMPORT_INVOICES} invoices can be imported at once', 400)

    imported = []
    errors = []

    try:
        for row_number, row in enumerate(rows, start=1):
            if not isinstance(row, dict):
                errors.append({'row': row_number, 'message': 'Row must be a JSON object'})
                continue

            summary = {'invoice_number': row.get('invoice_number'), 'company_name': row.get('company_name')}
            form = InvoiceImportForm(formdata=json_to_formdata(row))
            if not form.validate():
                errors.append({'row': row_number, 'message': 'Validation failed', 'errors': form.errors,
                               'data': summary})
                continue

            try:
                with db.session.begin_nested():
                    invoice = import_invoice(form.data)
                imported.append(invoice)
            except DOMAIN_ERRORS as e:
                message = getattr(e, 'message', None) or str(e)
                logger.warning(f"Import row {row_number} rejected: {message}")
                errors.append({'row': row_number, 'message': message, 'data': summary})

        db.session.commit()
    except Exception as e:
        logger.error(f"Error importing invoices: {str(e)}")
        db.session.rollback()
        return error_response('Could not import invoices', 500)

    logger.info(f"Invoice import: {len(imported)} imported, {len(errors)} failed")
    return jsonify({
        'success': True,
        'message': f'Import completed. {len(imported)} invoices imported, {len(errors)} failed.',
        'total': len(rows),
        'imported': len(imported),
        'failed': len(errors),
        'data': [invoice.to_dict() for invoice in imported],
        'errors': errors
    })


@invoices_bp.route('/import/template', methods=['GET'])
def import_template():
    """Describe the import row format with an example batch."""
    return jsonify({
        'success': True,
        'data': {
            'fields': {
                'invoice_number': 'optional, PREFIX-YY-MM-NNN; generated when missing',
                'company_name': 'required, matched case-insensitively among active companies',
                'company_npwp': 'optional, preferred over company_name when it matches',
                'invoice_date': 'required, YYYY-MM-DD',
                'notes': 'optional',
                'bank_account': 'optional bank or account name; the default account otherwise',
                'lines': 'required list of tka_name, tka_passport, job_name, custom_job_name, '
                         'custom_price, quantity (default 1), baris (default position)'
            },
            'example': {
                'invoices': [{
                    'company_name': 'PT Example Company',
                    'company_npwp': '01.234.567.8-901.000',
                    'invoice_date': '2025-08-15',
                    'notes': 'August placement',
                    'lines': [
                        {'tka_name': 'John Smith', 'tka_passport': 'A12345678',
                         'job_name': 'Site supervision', 'quantity': 1, 'baris': 1}
                    ]
                }]
            },
            'limits': {
                'max_invoices': MAX_IMPORT_INVOICES,
                'max_lines_per_invoice': MAX_IMPORT_LINES,
                'supported_date_format': 'YYYY-MM-DD'
            }
        }
    })


@invoices_bp.route('/<int:invoice_id>', methods=['GET'])
def get_invoice(invoice_id):
    """Invoice with its stored aggregate; totals are read, never recomputed."""
    invoice = db.get_or_404(Invoice, invoice_id)
    return jsonify({'success': True, 'data': _invoice_detail(invoice)})


@invoices_bp.route('/<int:invoice_id>', methods=['PUT'])
def update_invoice_route(invoice_id):
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    if not invoice.is_editable:
        db.session.rollback()
        return error_response(f'Invoice {invoice.invoice_number} is {invoice.status} and can no longer be edited', 409)

    payload = get_json_payload()
    current = {
        'company_id': invoice.company_id,
        'invoice_date': invoice.invoice_date.isoformat(),
        'notes': invoice.notes,
        'bank_account_id': invoice.bank_account_id,
        'vat_percentage': format_money(invoice.vat_percentage),
    }
    form = InvoiceUpdateForm(formdata=json_to_formdata({**current, **payload}))
    form._current_company_id = invoice.company_id
    if not form.validate():
        db.session.rollback()
        return form_errors_response(form)

    header = {
        'company_id': form.company_id.data,
        'invoice_date': form.invoice_date.data,
        'notes': form.notes.data or None,
        'bank_account_id': form.bank_account_id.data,
        'vat_percentage': form.vat_percentage.data,
    }
    lines_data = form.line_data() if 'lines' in payload else None

    try:
        update_invoice(invoice, header, lines_data)
        db.session.commit()
        return jsonify({'success': True, 'message': 'Invoice updated', 'data': _invoice_detail(invoice)})
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error updating invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update invoice', 500)


@invoices_bp.route('/<int:invoice_id>', methods=['DELETE'])
def delete_invoice(invoice_id):
    invoice = db.get_or_404(Invoice, invoice_id)

    if not invoice.can_be_deleted:
        return error_response('Paid invoices cannot be deleted', 409)

    try:
        invoice_number = invoice.invoice_number
        db.session.delete(invoice)
        db.session.commit()
        logger.info(f"Invoice {invoice_number} deleted")
        return jsonify({'success': True, 'message': f'Invoice {invoice_number} deleted'})
    except Exception as e:
        logger.error(f"Error deleting invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete invoice', 500)


@invoices_bp.route('/<int:invoice_id>/status', methods=['PUT'])
def change_status(invoice_id):
    """Move an invoice along draft -> finalized -> paid, or cancel it."""
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    form = InvoiceStatusForm(formdata=json_to_formdata(get_json_payload()))
    if not form.validate():
        db.session.rollback()
        return form_errors_response(form)

    try:
        message = InvoiceStatusTransition.transition_invoice_status(invoice, form.status.data)
        db.session.commit()
        logger.info(f"Invoice {invoice.invoice_number} status changed to {invoice.status}")
        return jsonify({
            'success': True,
            'message': message,
            'new_status': invoice.status,
            'status_display': InvoiceStatusTransition.get_status_display_name(invoice.status),
            'valid_transitions': InvoiceStatusTransition.get_valid_transitions(invoice.status)
        })
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error changing status for invoice {invoice_id} to {form.status.data}: {str(e)}")
        db.session.rollback()
        return error_response('Could not change invoice status', 500)


@invoices_bp.route('/<int:invoice_id>/duplicate', methods=['POST'])
def duplicate_invoice_route(invoice_id):
    original = db.get_or_404(Invoice, invoice_id)

    try:
        duplicate = duplicate_invoice(original)
        db.session.commit()
        return jsonify({
            'success': True,
            'message': f'Invoice {original.invoice_number} duplicated as {duplicate.invoice_number}',
            'data': _invoice_detail(duplicate)
        }), 201
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error duplicating invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not duplicate invoice', 500)


@invoices_bp.route('/<int:invoice_id>/lines', methods=['GET'])
def list_lines(invoice_id):
    invoice = db.get_or_404(Invoice, invoice_id)
    return jsonify({
        'success': True,
        'data': [line.to_dict() for line in invoice.lines],
        'totals': _totals(invoice)
    })


@invoices_bp.route('/<int:invoice_id>/lines', methods=['POST'])
def add_line_route(invoice_id):
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    form = InvoiceLineForm(formdata=json_to_formdata(get_json_payload()))
    if not form.validate():
        db.session.rollback()
        return form_errors_response(form)

    try:
        line = add_line(invoice, form.data)
        db.session.commit()
        return jsonify({
            'success': True,
            'message': 'Line added',
            'data': line.to_dict(),
            'totals': _totals(invoice)
        }), 201
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error adding line to invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not add line', 500)


@invoices_bp.route('/<int:invoice_id>/lines', methods=['PUT'])
def replace_lines_route(invoice_id):
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    form = InvoiceLinesForm(formdata=json_to_formdata(get_json_payload()))
    if not form.validate():
        db.session.rollback()
        return form_errors_response(form)

    try:
        lines = replace_lines(invoice, form.line_data())
        db.session.commit()
        return jsonify({
            'success': True,
            'message': f'{len(lines)} lines saved',
            'data': [line.to_dict() for line in invoice.lines],
            'totals': _totals(invoice)
        })
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error replacing lines of invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not save lines', 500)


@invoices_bp.route('/<int:invoice_id>/lines/<int:line_id>', methods=['DELETE'])
def delete_line_route(invoice_id, line_id):
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    line = db.session.get(InvoiceLine, line_id)
    if line is None or line.invoice_id != invoice.id:
        db.session.rollback()
        return error_response('Line not found', 404)

    try:
        delete_line(invoice, line)
        db.session.commit()
        return jsonify({
            'success': True,
            'message': 'Line deleted',
            'data': [remaining.to_dict() for remaining in invoice.lines],
            'totals': _totals(invoice)
        })
    except DOMAIN_ERRORS as e:
        return _domain_error_response(e, invoice_id)
    except Exception as e:
        logger.error(f"Error deleting line {line_id} of invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete line', 500)


@invoices_bp.route('/<int:invoice_id>/print-data', methods=['GET'])
def print_data(invoice_id):
    """Everything a printed invoice shows, with lines grouped by row number."""
    invoice = db.get_or_404(Invoice, invoice_id)
    bank_account = invoice.bank_account or BankAccount.get_default()

    groups = []
    for group in invoice.lines_by_baris():
        group_total = sum((Decimal(str(line.line_total)) for line in group['lines']), Decimal('0'))
        groups.append({
            'baris': group['baris'],
            'lines': [line.to_dict() for line in group['lines']],
            'subtotal': format_money(group_total)
        })

    return jsonify({
        'success': True,
        'data': {
            'invoice': invoice.to_dict(),
            'company': invoice.company.to_dict(),
            'issuer': AppSetting.get_value('company_info', {}),
            'bank_account': bank_account.to_dict() if bank_account else None,
            'groups': groups,
            'totals': _totals(invoice),
            'amount_in_words': amount_to_words(invoice.total_amount)
        }
    })


@invoices_bp.route('/<int:invoice_id>/print', methods=['POST'])
def record_print(invoice_id):
    """Record that copies of the invoice were printed."""
    invoice, not_found = _locked_invoice_or_404(invoice_id)
    if not_found:
        return not_found

    form = PrintForm(formdata=json_to_formdata(request.get_json(silent=True) or {}))
    if not form.validate():
        db.session.rollback()
        return form_errors_response(form)

    copies = form.copies.data or 1

    try:
        invoice.printed_count = (invoice.printed_count or 0) + copies
        invoice.last_printed_at = datetime.utcnow()
        db.session.commit()
        logger.info(f"Invoice {invoice.invoice_number} printed ({copies} copies)")
        return jsonify({
            'success': True,
            'message': f"Invoice printed ({copies} {'copy' if copies == 1 else 'copies'})",
            'copies': copies,
            'printed_count': invoice.printed_count
        })
    except Exception as e:
        logger.error(f"Error recording print for invoice {invoice_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not record print', 500)
