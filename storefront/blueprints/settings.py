from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import Permission
from storefront.middleware import permission_required
from storefront.services import settings_service
from storefront.services.audit_service import log_audit
from storefront.utils import get_json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('settings', __name__)


@bp.route('/api/settings/payment', methods=['GET'])
def get_payment_settings():
    return jsonify(settings_service.get_payment_settings())


@bp.route('/api/settings/payment', methods=['POST', 'PUT'])
@login_required
@permission_required(Permission.MANAGE_SETTINGS)
def update_payment_settings():
    data = get_json_body()
    if 'bank_account' not in data and 'cash_on_delivery' not in data:
        return jsonify({
            'error': 'Nothing to update: send bank_account or '
                     'cash_on_delivery'
        }), 400

    settings = settings_service.update_payment_settings(
        bank_account=data.get('bank_account'),
        cash_on_delivery=data.get('cash_on_delivery'),
    )
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action='PAYMENT_SETTINGS_UPDATE',
        target_type='SETTINGS',
        target_id=None,
        payload={'sections': sorted(
            k for k in ('bank_account', 'cash_on_delivery') if k in data)}
    )
    return jsonify(settings)
