from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.errors import ValidationError
from storefront.models import Permission, PromoCode
from storefront.middleware import permission_required
from storefront.serializers import promo_code_payload
from storefront.services import promo_service
from storefront.services.audit_service import log_audit
from storefront.services.pricing import to_money
from storefront.utils import (
    get_json_body,
    money,
    paginate_query,
    pagination_args,
    parse_bool,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('promo_codes', __name__)


def _audit(action, promo_id, payload=None):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action=action,
        target_type='PROMO_CODE',
        target_id=promo_id,
        payload=payload
    )


@bp.route('/api/promo-codes', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_PROMO_CODES)
def list_promo_codes():
    page, per_page = pagination_args()
    query = PromoCode.query
    active = parse_bool(request.args.get('active'))
    if active is not None:
        query = query.filter(PromoCode.is_active.is_(active))
    result = paginate_query(
        query.order_by(PromoCode.created_at.desc(), PromoCode.id.desc()),
        page,
        per_page)
    result['items'] = [promo_code_payload(p) for p in result['items']]
    return jsonify(result)


@bp.route('/api/promo-codes/active', methods=['GET'])
def active_promo_codes():
    return jsonify({
        'items': [
            {
                'code': p.code,
                'discount_type': p.discount_type.value,
                'discount_value': money(p.discount_value),
                'minimum_order_amount': money(p.minimum_order_amount),
                'end_date': (
                    p.end_date.isoformat() if p.end_date else None),
            }
            for p in promo_service.active_promo_codes()
        ]
    })


@bp.route('/api/promo-codes/<int:promo_id>', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_PROMO_CODES)
def get_promo_code(promo_id):
    promo = promo_service.get_promo_code_or_404(promo_id)
    payload = promo_code_payload(promo)
    payload['usage_count'] = promo.usages.count()
    return jsonify(payload)


@bp.route('/api/promo-codes/validate', methods=['POST'])
def validate_promo_code():
    """Preview a code against a cart subtotal; nothing is redeemed."""
    data = get_json_body()
    code = str(data.get('code') or '').strip()
    if not code:
        return jsonify({'error': 'code is required'}), 400

    subtotal = None
    if data.get('subtotal') not in (None, ''):
        try:
            subtotal = to_money(data['subtotal'])
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError('Invalid subtotal')

    user_id = current_user.id if current_user.is_authenticated else None
    email = str(data.get('email') or '').strip() or (
        current_user.email if current_user.is_authenticated else None)

    promo, discount = promo_service.validate_promo_code(
        code, subtotal, user_id=user_id, email=email)
    response = {
        'valid': True,
        'code': promo.code,
        'discount_type': promo.discount_type.value,
        'discount_value': money(promo.discount_value),
        'minimum_order_amount': money(promo.minimum_order_amount),
    }
    if subtotal is not None:
        response['discount'] = money(discount)
        response['total_after_discount'] = money(subtotal - discount)
    return jsonify(response)


@bp.route('/api/promo-codes', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_PROMO_CODES)
def create_promo_code():
    promo = promo_service.save_promo_code(get_json_body())
    db.session.commit()

    _audit('PROMO_CODE_CREATE', promo.id, promo_code_payload(promo))
    return jsonify(promo_code_payload(promo)), 201


@bp.route('/api/promo-codes/<int:promo_id>', methods=['PUT', 'PATCH'])
@login_required
@permission_required(Permission.MANAGE_PROMO_CODES)
def update_promo_code(promo_id):
    promo = promo_service.get_promo_code_or_404(promo_id)
    data = get_json_body()
    promo_service.save_promo_code(data, promo)
    db.session.commit()

    _audit('PROMO_CODE_UPDATE', promo.id, {'fields': sorted(data.keys())})
    return jsonify(promo_code_payload(promo))


@bp.route('/api/promo-codes/<int:promo_id>', methods=['DELETE'])
@login_required
@permission_required(Permission.MANAGE_PROMO_CODES)
def delete_promo_code(promo_id):
    promo = promo_service.get_promo_code_or_404(promo_id)
    code = promo.code
    deleted = promo_service.delete_promo_code(promo)
    db.session.commit()

    _audit('PROMO_CODE_DELETE' if deleted else 'PROMO_CODE_DEACTIVATE',
           promo_id, {'code': code})
    return jsonify({'ok': True, 'deleted': deleted,
                    'deactivated': not deleted})
