from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import (
    Order,
    OrderStatus,
    PaymentMethod,
    Permission,
)
from storefront.serializers import (
    game_code_payload,
    order_item_payload,
    order_payload,
)
from storefront.services import order_service, settings_service, wallet_service
from storefront.services.audit_service import actor_fields, log_audit
from storefront.utils import (
    can_view_order,
    get_json_body,
    owner_or_permission_required,
    paginate_query,
    pagination_args,
    remember_guest_order,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)


def auto_cancel_unpaid_if_needed(order: Order) -> bool:
    """Lazy expiry; commits and audits when the order gets cancelled."""
    if not order_service.expire_if_overdue(order):
        return False
    db.session.commit()

    log_audit(
        actor_id=None,
        actor_role='SYSTEM',
        action='ORDER_AUTO_CANCEL_UNPAID',
        target_type='ORDER',
        target_id=order.id,
        payload={'deadline': order.payment_deadline.isoformat()}
    )
    return True


def auto_cancel_all(orders):
    for order in orders:
        auto_cancel_unpaid_if_needed(order)


def _payment_instructions(order):
    settings = settings_service.get_payment_settings()
    if order.payment_method == PaymentMethod.BANK_TRANSFER:
        return {'bank_account': settings['bank_account']}
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
        return {
            'additional_instructions':
                settings['cash_on_delivery'].get('additional_instructions'),
        }
    return None


def _load_visible_order(order_id):
    """(order, error_response) for the current visitor."""
    order = db.session.get(Order, order_id)
    if not order:
        return None, (jsonify({'error': 'Order not found'}), 404)
    if not can_view_order(order):
        return None, (jsonify({
            'error': 'No permission to access this order'
        }), 403)
    auto_cancel_unpaid_if_needed(order)
    return order, None


@bp.route('/api/orders', methods=['POST'])
def create_order():
    data = get_json_body()
    user = current_user if current_user.is_authenticated else None

    order = order_service.create_order(data, user=user)
    db.session.commit()
    remember_guest_order(order.id)

    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action='ORDER_CREATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'payment_method': order.payment_method.value,
            'subtotal': order.subtotal_before_discount,
            'promo_code': order.promo_code,
            'promo_discount': order.promo_discount,
            'wallet_amount_used': order.wallet_amount_used,
            'cod_fee': order.cod_fee,
            'total_amount': order.total_amount,
        }
    )

    payload = order_payload(order)
    payload['payment_instructions'] = _payment_instructions(order)
    return jsonify(payload), 201


@bp.route('/api/orders/<int:order_id>', methods=['GET'])
def get_order(order_id):
    order, error = _load_visible_order(order_id)
    if error:
        return error
    payload = order_payload(order)
    payload['payment_instructions'] = _payment_instructions(order)
    return jsonify(payload)


@bp.route('/api/orders/number/<reference>', methods=['GET'])
def get_order_by_number(reference):
    order_id = order_service.parse_order_reference(reference)
    if order_id is None:
        return jsonify({'error': 'Invalid order number'}), 400
    return get_order(order_id)


@bp.route('/api/orders/<int:order_id>/items', methods=['GET'])
def get_order_items(order_id):
    order, error = _load_visible_order(order_id)
    if error:
        return error
    return jsonify({'items': [order_item_payload(i) for i in order.items]})


@bp.route('/api/orders/<int:order_id>/game-codes', methods=['GET'])
def get_order_game_codes(order_id):
    order, error = _load_visible_order(order_id)
    if error:
        return error
    if order.status not in (OrderStatus.PAID, OrderStatus.DELIVERED):
        return jsonify({
            'error': 'Game codes are only available for paid orders'
        }), 400
    codes = order_service.latest_codes_by_item(order)
    return jsonify({'items': [game_code_payload(c) for c in codes]})


@bp.route('/api/users/<int:user_id>/orders', methods=['GET'])
@login_required
@owner_or_permission_required(Permission.MANAGE_ORDERS)
def list_user_orders(user_id):
    page, per_page = pagination_args()
    query = Order.query.filter_by(user_id=user_id).order_by(
        Order.created_at.desc(), Order.id.desc())
    result = paginate_query(query, page, per_page)
    auto_cancel_all(result['items'])
    result['items'] = [
        order_payload(o, include_items=False) for o in result['items']
    ]
    return jsonify(result)


@bp.route('/api/orders/verify', methods=['POST'])
def verify_order():
    """Guest lookup by order reference, e-mail and phone number."""
    data = get_json_body()
    reference = data.get('order_number') or data.get('order_id')
    email = str(data.get('email') or '').strip().lower()
    phone = str(data.get('phone') or data.get('phone_number') or '').strip()

    if not reference or not email or not phone:
        return jsonify({
            'error': 'Order number, email and phone are required'
        }), 400

    order = order_service.find_order_by_reference(reference)
    if not order:
        return jsonify({'error': 'Order not found'}), 404

    if order.email.strip().lower() != email \
            or order.phone_number.strip() != phone:
        logger.warning("Order %s verification failed", order.id)
        log_audit(
            actor_id=None,
            actor_role='ANONYMOUS',
            action='ORDER_VERIFY_FAILED',
            target_type='ORDER',
            target_id=order.id,
        )
        return jsonify({
            'error': 'The details do not match this order'
        }), 403

    remember_guest_order(order.id)
    return jsonify({'success': True, 'order_id': order.id})


@bp.route('/api/orders/<int:order_id>/pay-with-wallet', methods=['POST'])
@login_required
def pay_with_wallet(order_id):
    order, error = _load_visible_order(order_id)
    if error:
        return error
    data = get_json_body()

    order_service.pay_with_wallet(order, current_user, data.get('amount'))
    db.session.commit()

    actor_id, actor_role = actor_fields(current_user)
    log_audit(
        actor_id=actor_id,
        actor_role=actor_role,
        action='ORDER_WALLET_PAYMENT',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'wallet_amount_used': order.wallet_amount_used,
            'total_amount': order.total_amount,
            'status': order.status.value,
        }
    )

    payload = order_payload(order)
    payload['wallet_balance'] = float(
        wallet_service.current_balance(current_user.id))
    return jsonify(payload)
