from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from tka_invoice.forms import CompanyForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, Company, JobDescription
from tka_invoice.routes.utils import (error_response, form_errors_response, get_json_payload,
                                      json_to_formdata, paginated_response, parse_pagination)

logger = get_logger(__name__)

companies_bp = Blueprint('companies', __name__, url_prefix='/api/companies')

COMPANY_FIELDS = ('company_name', 'npwp', 'idtku', 'address', 'contact_phone', 'contact_email', 'is_active')


def _apply_form(company, form):
    for field in COMPANY_FIELDS:
        setattr(company, field, getattr(form, field).data)
    company.contact_phone = company.contact_phone or None
    company.contact_email = company.contact_email or None


@companies_bp.route('', methods=['GET'])
def list_companies():
    """Companies with optional search on name, NPWP and IDTKU."""
    limit, offset = parse_pagination()
    search = request.args.get('search', '').strip()
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')

    query = Company.query
    if not include_inactive:
        query = query.filter(Company.is_active.is_(True))
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(
            Company.company_name.ilike(pattern),
            Company.npwp.ilike(pattern),
            Company.idtku.ilike(pattern)
        ))

    return paginated_response(query.order_by(Company.company_name.asc()), limit, offset)


@companies_bp.route('', methods=['POST'])
def create_company():
    payload = {'is_active': True, **get_json_payload()}
    form = CompanyForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    company = Company()
    _apply_form(company, form)

    try:
        db.session.add(company)
        db.session.commit()
        logger.info(f"Company {company.company_name} created (id={company.id})")
        return jsonify({'success': True, 'message': 'Company created', 'data': company.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error creating company: {str(e)}")
        db.session.rollback()
        return error_response('Could not create company', 500)


@companies_bp.route('/<int:company_id>', methods=['GET'])
def get_company(company_id):
    company = db.get_or_404(Company, company_id)
    data = company.to_dict()
    data['invoice_count'] = company.invoice_count
    data['total_revenue'] = str(company.total_revenue)
    return jsonify({'success': True, 'data': data})


@companies_bp.route('/<int:company_id>', methods=['PUT'])
def update_company(company_id):
    company = db.get_or_404(Company, company_id)

    payload = {**company.to_dict(), **get_json_payload()}
    form = CompanyForm(formdata=json_to_formdata(payload))
    form._company_id = company.id
    if not form.validate():
        return form_errors_response(form)

    _apply_form(company, form)

    try:
        db.session.commit()
        logger.info(f"Company {company.id} updated")
        return jsonify({'success': True, 'message': 'Company updated', 'data': company.to_dict()})
    except Exception as e:
        logger.error(f"Error updating company {company_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update company', 500)


@companies_bp.route('/<int:company_id>', methods=['DELETE'])
def delete_company(company_id):
    """Soft delete: the company keeps its invoices but leaves the active lists."""
    company = db.get_or_404(Company, company_id)

    try:
        company.is_active = False
        db.session.commit()
        logger.info(f"Company {company.id} deactivated")
        return jsonify({'success': True, 'message': 'Company deleted'})
    except Exception as e:
        logger.error(f"Error deleting company {company_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete company', 500)


@companies_bp.route('/<int:company_id>/jobs', methods=['GET'])
def company_jobs(company_id):
    """Active job descriptions of a company in catalog order."""
    company = db.get_or_404(Company, company_id)
    jobs = (JobDescription.query
            .filter_by(company_id=company.id, is_active=True)
            .order_by(JobDescription.sort_order.asc(), JobDescription.job_name.asc())
            .all())
    return jsonify({'success': True, 'data': [job.to_dict() for job in jobs]})
