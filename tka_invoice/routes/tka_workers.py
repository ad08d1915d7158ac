from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from tka_invoice.forms import TkaFamilyMemberForm, TkaWorkerForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, TkaFamilyMember, TkaWorker
from tka_invoice.routes.utils import (error_response, form_errors_response, get_json_payload,
                                      json_to_formdata, paginated_response, parse_pagination)

logger = get_logger(__name__)

tka_workers_bp = Blueprint('tka_workers', __name__, url_prefix='/api/tka-workers')

WORKER_FIELDS = ('nama', 'passport', 'divisi', 'jenis_kelamin', 'is_active')
FAMILY_FIELDS = ('nama', 'passport', 'jenis_kelamin', 'relationship', 'is_active')


def _apply_form(worker, form):
    for field in WORKER_FIELDS:
        setattr(worker, field, getattr(form, field).data)
    worker.divisi = worker.divisi or None


@tka_workers_bp.route('', methods=['GET'])
def list_tka_workers():
    """Workers with optional search on name and passport."""
    limit, offset = parse_pagination()
    search = request.args.get('search', '').strip()
    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')

    query = TkaWorker.query
    if not include_inactive:
        query = query.filter(TkaWorker.is_active.is_(True))
    if search:
        pattern = f'%{search}%'
        query = query.filter(or_(TkaWorker.nama.ilike(pattern), TkaWorker.passport.ilike(pattern)))

    return paginated_response(query.order_by(TkaWorker.nama.asc()), limit, offset)


@tka_workers_bp.route('', methods=['POST'])
def create_tka_worker():
    payload = {'is_active': True, **get_json_payload()}
    form = TkaWorkerForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    worker = TkaWorker()
    _apply_form(worker, form)

    try:
        db.session.add(worker)
        db.session.commit()
        logger.info(f"TKA worker {worker.passport} created")
        return jsonify({'success': True, 'message': 'TKA worker created', 'data': worker.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error creating TKA worker: {str(e)}")
        db.session.rollback()
        return error_response('Could not create TKA worker', 500)


@tka_workers_bp.route('/<int:worker_id>', methods=['GET'])
def get_tka_worker(worker_id):
    worker = db.get_or_404(TkaWorker, worker_id)
    return jsonify({'success': True, 'data': worker.to_dict()})


@tka_workers_bp.route('/<int:worker_id>', methods=['PUT'])
def update_tka_worker(worker_id):
    worker = db.get_or_404(TkaWorker, worker_id)

    payload = {**worker.to_dict(), **get_json_payload()}
    form = TkaWorkerForm(formdata=json_to_formdata(payload))
    form._worker_id = worker.id
    if not form.validate():
        return form_errors_response(form)

    _apply_form(worker, form)

    try:
        db.session.commit()
        logger.info(f"TKA worker {worker.id} updated")
        return jsonify({'success': True, 'message': 'TKA worker updated', 'data': worker.to_dict()})
    except Exception as e:
        logger.error(f"Error updating TKA worker {worker_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update TKA worker', 500)


@tka_workers_bp.route('/<int:worker_id>', methods=['DELETE'])
def delete_tka_worker(worker_id):
    """Soft delete; invoice lines keep their worker reference."""
    worker = db.get_or_404(TkaWorker, worker_id)

    try:
        worker.is_active = False
        db.session.commit()
        logger.info(f"TKA worker {worker.id} deactivated")
        return jsonify({'success': True, 'message': 'TKA worker deleted'})
    except Exception as e:
        logger.error(f"Error deleting TKA worker {worker_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete TKA worker', 500)


def _active_worker_or_404(worker_id):
    worker = db.session.get(TkaWorker, worker_id)
    if worker is None or not worker.is_active:
        return None, error_response('TKA worker not found', 404)
    return worker, None


def _family_member_or_404(worker, member_id):
    member = db.session.get(TkaFamilyMember, member_id)
    if member is None or member.tka_id != worker.id:
        return None, error_response('Family member not found', 404)
    return member, None


@tka_workers_bp.route('/<int:worker_id>/family', methods=['GET'])
def list_family_members(worker_id):
    worker, not_found = _active_worker_or_404(worker_id)
    if not_found:
        return not_found

    include_inactive = request.args.get('include_inactive', '').lower() in ('1', 'true', 'yes')
    members = [member for member in worker.family_members if include_inactive or member.is_active]
    return jsonify({
        'success': True,
        'data': [member.to_dict() for member in members],
        'tka_worker': worker.to_dict()
    })


@tka_workers_bp.route('/<int:worker_id>/family', methods=['POST'])
def create_family_member(worker_id):
    worker, not_found = _active_worker_or_404(worker_id)
    if not_found:
        return not_found

    payload = {'is_active': True, **get_json_payload()}
    form = TkaFamilyMemberForm(formdata=json_to_formdata(payload))
    form._worker_id = worker.id
    if not form.validate():
        return form_errors_response(form)

    member = TkaFamilyMember(tka_id=worker.id)
    for field in FAMILY_FIELDS:
        setattr(member, field, getattr(form, field).data)

    try:
        db.session.add(member)
        db.session.commit()
        logger.info(f"Family member {member.passport} ({member.relationship}) added to TKA worker {worker.id}")
        return jsonify({'success': True, 'message': 'Family member added', 'data': member.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error adding family member to TKA worker {worker_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not add family member', 500)


@tka_workers_bp.route('/<int:worker_id>/family/<int:member_id>', methods=['PUT'])
def update_family_member(worker_id, member_id):
    worker, not_found = _active_worker_or_404(worker_id)
    if not_found:
        return not_found
    member, not_found = _family_member_or_404(worker, member_id)
    if not_found:
        return not_found

    payload = {**member.to_dict(), **get_json_payload()}
    form = TkaFamilyMemberForm(formdata=json_to_formdata(payload))
    form._worker_id = worker.id
    form._member_id = member.id
    if not form.validate():
        return form_errors_response(form)

    for field in FAMILY_FIELDS:
        setattr(member, field, getattr(form, field).data)

    try:
        db.session.commit()
        logger.info(f"Family member {member.id} of TKA worker {worker.id} updated")
        return jsonify({'success': True, 'message': 'Family member updated', 'data': member.to_dict()})
    except Exception as e:
        logger.error(f"Error updating family member {member_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update family member', 500)


@tka_workers_bp.route('/<int:worker_id>/family/<int:member_id>', methods=['DELETE'])
def delete_family_member(worker_id, member_id):
    """Hard delete; family members never appear on invoice lines."""
    worker, not_found = _active_worker_or_404(worker_id)
    if not_found:
        return not_found
    member, not_found = _family_member_or_404(worker, member_id)
    if not_found:
        return not_found

    try:
        db.session.delete(member)
        db.session.commit()
        logger.info(f"Family member {member_id} of TKA worker {worker.id} deleted")
        return jsonify({'success': True, 'message': 'Family member deleted'})
    except Exception as e:
        logger.error(f"Error deleting family member {member_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete family member', 500)
