from flask import Blueprint, jsonify, request

from tka_invoice.forms import JobDescriptionForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, JobDescription
from tka_invoice.routes.utils import (error_response, form_errors_response, get_json_payload,
                                      json_to_formdata, paginated_response, parse_pagination)

logger = get_logger(__name__)

job_descriptions_bp = Blueprint('job_descriptions', __name__, url_prefix='/api/job-descriptions')

JOB_FIELDS = ('company_id', 'job_name', 'job_description', 'price', 'is_active', 'sort_order')


def _apply_form(job, form):
    for field in JOB_FIELDS:
        setattr(job, field, getattr(form, field).data)
    if job.sort_order is None:
        job.sort_order = 0


@job_descriptions_bp.route('', methods=['GET'])
def list_job_descriptions():
    limit, offset = parse_pagination()
    company_id = request.args.get('company_id', type=int)
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')

    query = JobDescription.query
    if company_id:
        query = query.filter_by(company_id=company_id)
    if not include_inactive:
        query = query.filter(JobDescription.is_active.is_(True))

    query = query.order_by(JobDescription.company_id.asc(), JobDescription.sort_order.asc(),
                           JobDescription.id.asc())
    return paginated_response(query, limit, offset)


@job_descriptions_bp.route('', methods=['POST'])
def create_job_description():
    payload = {'is_active': True, 'sort_order': 0, **get_json_payload()}
    form = JobDescriptionForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    job = JobDescription()
    _apply_form(job, form)

    try:
        db.session.add(job)
        db.session.commit()
        logger.info(f"Job description {job.job_name} created for company {job.company_id}")
        return jsonify({'success': True, 'message': 'Job description created', 'data': job.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error creating job description: {str(e)}")
        db.session.rollback()
        return error_response('Could not create job description', 500)


@job_descriptions_bp.route('/<int:job_id>', methods=['GET'])
def get_job_description(job_id):
    job = db.get_or_404(JobDescription, job_id)
    return jsonify({'success': True, 'data': job.to_dict()})


@job_descriptions_bp.route('/<int:job_id>', methods=['PUT'])
def update_job_description(job_id):
    """Update a catalog entry. Existing invoice lines keep the price they were created with."""
    job = db.get_or_404(JobDescription, job_id)

    payload = {**job.to_dict(), **get_json_payload()}
    form = JobDescriptionForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    _apply_form(job, form)

    try:
        db.session.commit()
        logger.info(f"Job description {job.id} updated")
        return jsonify({'success': True, 'message': 'Job description updated', 'data': job.to_dict()})
    except Exception as e:
        logger.error(f"Error updating job description {job_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update job description', 500)


@job_descriptions_bp.route('/<int:job_id>', methods=['DELETE'])
def delete_job_description(job_id):
    """Soft delete; lines that reference the job keep working."""
    job = db.get_or_404(JobDescription, job_id)

    try:
        job.is_active = False
        db.session.commit()
        logger.info(f"Job description {job.id} deactivated")
        return jsonify({'success': True, 'message': 'Job description deleted'})
    except Exception as e:
        logger.error(f"Error deleting job description {job_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete job description', 500)
