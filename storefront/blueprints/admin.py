from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from sqlalchemy import func, or_
from storefront.extensions import db
from storefront.models import (
    GameCode,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Permission,
    Product,
    User,
    UserRole,
    utcnow,
)
from storefront.middleware import permission_required
from storefront.serializers import game_code_payload, order_payload
from storefront.services import order_service
from storefront.services.audit_service import log_audit
from storefront.services.order_service import parse_enum
from storefront.blueprints.orders import auto_cancel_unpaid_if_needed
from storefront.utils import (
    get_json_body,
    money,
    paginate_query,
    pagination_args,
    parse_bool,
)
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)


def _audit_order(action, order, payload=None):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action=action,
        target_type='ORDER',
        target_id=order.id,
        payload=payload
    )


def _load_order(order_id):
    order = order_service.get_order_or_404(order_id)
    auto_cancel_unpaid_if_needed(order)
    return order


def _sweep_overdue():
    expired = order_service.expire_overdue_orders()
    if not expired:
        return
    db.session.commit()
    for order in expired:
        log_audit(
            actor_id=None,
            actor_role='SYSTEM',
            action='ORDER_AUTO_CANCEL_UNPAID',
            target_type='ORDER',
            target_id=order.id,
            payload={'deadline': order.payment_deadline}
        )


@bp.route('/api/orders/<int:order_id>/status', methods=['PATCH'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def update_order_status(order_id):
    order = _load_order(order_id)
    data = get_json_body()
    status_raw = str(data.get('status') or '').strip()
    reason = str(data.get('reason') or '').strip() or None

    if not status_raw:
        return jsonify({'error': 'status is required'}), 400
    new_status = parse_enum(OrderStatus, status_raw, 'status')

    old_status = order.status
    order_service.change_status(order, new_status, reason=reason)
    db.session.commit()

    _audit_order('ORDER_STATUS_UPDATE', order, {
        'from': old_status.value,
        'to': order.status.value,
        'reason': reason,
    })
    return jsonify({'ok': True, 'order': order_payload(order)})


@bp.route('/api/orders/<int:order_id>/payment', methods=['PATCH'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def confirm_payment(order_id):
    """Confirm a payment; codes sent along deliver the order right away."""
    order = _load_order(order_id)
    data = get_json_body()
    codes = data.get('game_codes') or []

    if order.status == OrderStatus.PENDING \
            and order.payment_method != PaymentMethod.CASH_ON_DELIVERY:
        order_service.mark_paid(order)
    elif order.status not in (OrderStatus.PENDING, OrderStatus.PAID):
        return jsonify({
            'error': f'Cannot confirm payment of a {order.status.value} '
                     f'order'
        }), 400

    if codes:
        order_service.attach_game_codes(order, codes)
        order_service.mark_delivered(order)
    elif order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
        return jsonify({
            'error': 'Cash on delivery orders are confirmed on delivery, '
                     'send the game codes'
        }), 400
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action='PAYMENT_CONFIRM',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'status': order.status.value,
            'codes_attached': len(codes),
            'cashback_amount': order.cashback_amount,
        }
    )
    return jsonify({'ok': True, 'order': order_payload(order)})


@bp.route('/api/orders/<int:order_id>/game-codes', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def attach_game_codes(order_id):
    order = _load_order(order_id)
    data = get_json_body()
    deliver = parse_bool(data.get('deliver'), default=True)

    attached = order_service.attach_game_codes(order, data.get('codes'))
    if deliver:
        if order.status == OrderStatus.PENDING \
                and order.payment_method != PaymentMethod.CASH_ON_DELIVERY:
            order_service.mark_paid(order)
        order_service.mark_delivered(order)
    db.session.commit()

    _audit_order('ORDER_GAME_CODES_ATTACH', order, {
        'count': len(attached),
        'delivered': order.status == OrderStatus.DELIVERED,
    })
    return jsonify({
        'ok': True,
        'order': order_payload(order),
        'game_codes': [game_code_payload(c) for c in attached],
    })


@bp.route('/api/orders/<int:order_id>/cancel', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def cancel_order(order_id):
    order = _load_order(order_id)
    reason = str(get_json_body().get('reason') or '').strip()
    if not reason:
        return jsonify({'error': 'A cancellation reason is required'}), 400

    old_status = order.status
    order_service.cancel_order(order, reason)
    db.session.commit()

    _audit_order('ORDER_CANCEL', order, {
        'from': old_status.value,
        'reason': reason,
        'wallet_refunded': order.wallet_amount_used,
    })
    return jsonify({'ok': True, 'order': order_payload(order)})


@bp.route('/api/orders/<int:order_id>/restore', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def restore_order(order_id):
    order = order_service.get_order_or_404(order_id)
    previous_reason = order.cancelled_reason
    order_service.restore_order(order)
    db.session.commit()

    _audit_order('ORDER_RESTORE', order, {
        'previous_reason': previous_reason,
        'payment_deadline': order.payment_deadline,
    })
    return jsonify({'ok': True, 'order': order_payload(order)})


@bp.route('/api/admin/orders', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def admin_orders():
    _sweep_overdue()
    page, per_page = pagination_args()
    query = Order.query

    status = (request.args.get('status') or '').strip()
    if status:
        query = query.filter(
            Order.status == parse_enum(OrderStatus, status, 'status'))
    payment_status = (request.args.get('payment_status') or '').strip()
    if payment_status:
        query = query.filter(Order.payment_status == parse_enum(
            PaymentStatus, payment_status, 'payment status'))
    payment_method = (request.args.get('payment_method') or '').strip()
    if payment_method:
        query = query.filter(Order.payment_method == parse_enum(
            PaymentMethod, payment_method, 'payment method'))
    user_id = request.args.get('user_id', type=int)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)

    keyword = (request.args.get('q') or '').strip()
    if keyword:
        pattern = f'%{keyword}%'
        conditions = [
            Order.email.ilike(pattern),
            Order.first_name.ilike(pattern),
            Order.last_name.ilike(pattern),
            Order.phone_number.ilike(pattern),
        ]
        order_id = order_service.parse_order_reference(keyword)
        if order_id is not None:
            conditions.append(Order.id == order_id)
        query = query.filter(or_(*conditions))

    result = paginate_query(
        query.order_by(Order.created_at.desc(), Order.id.desc()),
        page,
        per_page)
    result['items'] = [
        order_payload(o, include_items=False) for o in result['items']
    ]
    return jsonify(result)


@bp.route('/api/admin/orders/cancelled', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_ORDERS)
def cancelled_orders():
    _sweep_overdue()
    page, per_page = pagination_args()
    query = Order.query.filter_by(status=OrderStatus.CANCELLED).order_by(
        Order.cancelled_at.desc(), Order.id.desc())
    result = paginate_query(query, page, per_page)
    result['items'] = [
        order_payload(o, include_items=False) for o in result['items']
    ]
    return jsonify(result)


@bp.route('/api/admin/dashboard', methods=['GET'])
@login_required
@permission_required(Permission.VIEW_DASHBOARD)
def dashboard():
    _sweep_overdue()
    now = utcnow()
    month_ago = now - timedelta(days=30)

    status_counts = dict(
        db.session.query(Order.status, func.count(Order.id))
        .group_by(Order.status).all()
    )
    revenue = db.session.query(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).filter(Order.status == OrderStatus.DELIVERED).scalar()
    revenue_30d = db.session.query(
        func.coalesce(func.sum(Order.total_amount), 0)
    ).filter(
        Order.status == OrderStatus.DELIVERED,
        Order.delivered_at >= month_ago,
    ).scalar()

    stats = {
        'total_customers': User.query.filter_by(
            role=UserRole.CUSTOMER).count(),
        'total_products': Product.query.filter_by(
            is_deleted=False).count(),
        'low_stock_products': Product.query.filter(
            Product.is_deleted.is_(False),
            Product.is_pre_order.is_(False),
            Product.stock <= 5,
        ).count(),
        'unused_game_codes': GameCode.query.filter_by(is_used=False).count(),
        'orders_by_status': {
            status.value: status_counts.get(status, 0)
            for status in OrderStatus
        },
        'total_orders': sum(status_counts.values()),
        'revenue': money(revenue),
        'revenue_last_30_days': money(revenue_30d),
        'recent_orders': [
            order_payload(o, include_items=False)
            for o in Order.query.order_by(
                Order.created_at.desc(), Order.id.desc()).limit(5)
        ],
    }
    return jsonify(stats)
