from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import (
    Order,
    Permission,
    User,
    WalletTransaction,
    WalletTransactionType,
)
from storefront.middleware import permission_required
from storefront.serializers import (
    order_payload,
    user_payload,
    wallet_transaction_payload,
)
from storefront.services import wallet_service
from storefront.services.audit_service import log_audit
from storefront.services.order_service import parse_enum
from storefront.utils import (
    get_json_body,
    money,
    owner_or_permission_required,
    paginate_query,
    pagination_args,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('wallet', __name__)

RECENT_ORDERS_LIMIT = 3


def _transactions_page(query):
    page, per_page = pagination_args()
    tx_type = (request.args.get('type') or '').strip()
    if tx_type:
        query = query.filter(WalletTransaction.type == parse_enum(
            WalletTransactionType, tx_type, 'transaction type'))
    result = paginate_query(
        query.order_by(
            WalletTransaction.created_at.desc(),
            WalletTransaction.id.desc()),
        page,
        per_page)
    result['items'] = [wallet_transaction_payload(t) for t in result['items']]
    return result


@bp.route('/api/users/<int:user_id>/wallet/balance', methods=['GET'])
@login_required
@owner_or_permission_required(Permission.MANAGE_WALLETS)
def wallet_balance(user_id):
    balance = wallet_service.current_balance(user_id)
    return jsonify({'user_id': user_id, 'balance': money(balance)})


@bp.route('/api/users/<int:user_id>/wallet/transactions', methods=['GET'])
@login_required
@owner_or_permission_required(Permission.MANAGE_WALLETS)
def wallet_transactions(user_id):
    if not db.session.get(User, user_id):
        return jsonify({'error': 'User not found'}), 404
    query = WalletTransaction.query.filter_by(user_id=user_id)
    return jsonify(_transactions_page(query))


@bp.route('/api/wallet/transactions', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_WALLETS)
def adjust_wallet():
    """Manual deposit or withdrawal by an admin."""
    data = get_json_body()
    user_id = data.get('user_id')
    if not isinstance(user_id, int):
        return jsonify({'error': 'user_id is required'}), 400
    if not db.session.get(User, user_id):
        return jsonify({'error': 'User not found'}), 404

    tx_type = parse_enum(
        WalletTransactionType, data.get('type'), 'transaction type')
    transaction = wallet_service.admin_adjust(
        user_id, data.get('amount'), tx_type, data.get('description'))
    db.session.commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action='WALLET_ADJUST',
        target_type='USER',
        target_id=user_id,
        payload={
            'type': tx_type.value,
            'amount': transaction.amount,
            'balance_after': transaction.balance_after,
        }
    )
    return jsonify(wallet_transaction_payload(transaction)), 201


@bp.route('/api/admin/wallet/transactions', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_WALLETS)
def all_wallet_transactions():
    query = WalletTransaction.query
    user_id = request.args.get('user_id', type=int)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    return jsonify(_transactions_page(query))


@bp.route('/api/admin/wallet/reconcile', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_WALLETS)
def reconcile():
    drift = wallet_service.reconcile_wallets()
    return jsonify({'ok': not drift, 'drift': drift})


@bp.route('/api/checkout/user-info', methods=['GET'])
@login_required
def checkout_user_info():
    """Prefill data for the checkout form."""
    recent = Order.query.filter_by(user_id=current_user.id).order_by(
        Order.created_at.desc(), Order.id.desc()).limit(RECENT_ORDERS_LIMIT)
    return jsonify({
        'user': user_payload(current_user),
        'wallet_balance': money(
            wallet_service.current_balance(current_user.id)),
        'recent_orders': [
            order_payload(o, include_items=False) for o in recent
        ],
    })
