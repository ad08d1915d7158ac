from flask import Blueprint, jsonify

from tka_invoice.forms import BankAccountForm
from tka_invoice.logging_config import get_logger
from tka_invoice.models import db, BankAccount
from tka_invoice.routes.utils import error_response, form_errors_response, get_json_payload, json_to_formdata

logger = get_logger(__name__)

bank_accounts_bp = Blueprint('bank_accounts', __name__, url_prefix='/api/bank-accounts')

ACCOUNT_FIELDS = ('bank_name', 'account_number', 'account_name', 'is_default', 'is_active', 'sort_order')


def _apply_form(account, form):
    for field in ACCOUNT_FIELDS:
        setattr(account, field, getattr(form, field).data)
    if account.sort_order is None:
        account.sort_order = 0


@bank_accounts_bp.route('', methods=['GET'])
def list_bank_accounts():
    accounts = (BankAccount.query
                .filter_by(is_active=True)
                .order_by(BankAccount.sort_order.asc(), BankAccount.bank_name.asc())
                .all())
    return jsonify({'success': True, 'data': [account.to_dict() for account in accounts]})


@bank_accounts_bp.route('', methods=['POST'])
def create_bank_account():
    payload = {'is_active': True, 'is_default': False, 'sort_order': 0, **get_json_payload()}
    form = BankAccountForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    account = BankAccount()
    _apply_form(account, form)

    try:
        db.session.add(account)
        db.session.flush()
        # Only one default account
        if account.is_default:
            BankAccount.clear_default(except_id=account.id)
        db.session.commit()
        logger.info(f"Bank account {account.bank_name} {account.account_number} created")
        return jsonify({'success': True, 'message': 'Bank account created', 'data': account.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error creating bank account: {str(e)}")
        db.session.rollback()
        return error_response('Could not create bank account', 500)


@bank_accounts_bp.route('/<int:account_id>', methods=['PUT'])
def update_bank_account(account_id):
    account = db.get_or_404(BankAccount, account_id)

    payload = {**account.to_dict(), **get_json_payload()}
    form = BankAccountForm(formdata=json_to_formdata(payload))
    if not form.validate():
        return form_errors_response(form)

    _apply_form(account, form)

    try:
        if account.is_default:
            BankAccount.clear_default(except_id=account.id)
        db.session.commit()
        logger.info(f"Bank account {account.id} updated")
        return jsonify({'success': True, 'message': 'Bank account updated', 'data': account.to_dict()})
    except Exception as e:
        logger.error(f"Error updating bank account {account_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not update bank account', 500)


@bank_accounts_bp.route('/<int:account_id>', methods=['DELETE'])
def delete_bank_account(account_id):
    """Soft delete; a deactivated account stops being the default."""
    account = db.get_or_404(BankAccount, account_id)

    try:
        account.is_active = False
        account.is_default = False
        db.session.commit()
        logger.info(f"Bank account {account.id} deactivated")
        return jsonify({'success': True, 'message': 'Bank account deleted'})
    except Exception as e:
        logger.error(f"Error deleting bank account {account_id}: {str(e)}")
        db.session.rollback()
        return error_response('Could not delete bank account', 500)
