from flask import Blueprint, jsonify

from tka_invoice.forms import SettingsForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, AppSetting
from tka_invoice.routes.utils import error_response, form_errors_response, get_json_payload, json_to_formdata

logger = get_logger(__name__)

settings_bp = Blueprint('settings', __name__, url_prefix='/api/settings')


@settings_bp.route('', methods=['GET'])
def get_settings():
    settings = AppSetting.get_all()
    settings.setdefault('vat_percentage', float(AppSetting.get_default_vat_percentage()))
    return jsonify({'success': True, 'data': settings})


@settings_bp.route('', methods=['PUT'])
def update_settings():
    """
    Update system defaults.

    A new vat_percentage only applies to invoices created afterwards;
    existing invoices keep the rate stored on them.
    """
    payload = get_json_payload()
    company_info = payload.pop('company_info', None)
    if company_info is not None and not isinstance(company_info, dict):
        return error_response('Validation failed', 400, errors={'company_info': ['Must be an object']})

    form = SettingsForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    try:
        if form.vat_percentage.data is not None:
            AppSetting.set_value('vat_percentage', float(form.vat_percentage.data), setting_type='number')
        if form.invoice_prefix.data:
            AppSetting.set_value('invoice_prefix', form.invoice_prefix.data, setting_type='string')
        if company_info is not None:
            AppSetting.set_value('company_info', company_info, setting_type='json')
        db.session.commit()
        logger.info(f"Settings updated: {sorted(k for k in payload if payload[k] is not None)}")
        return jsonify({'success': True, 'message': 'Settings updated', 'data': AppSetting.get_all()})
    except Exception as e:
        logger.error(f"Error updating settings: {str(e)}")
        db.session.rollback()
        return error_response('Could not update settings', 500)
