"""Wallet balance changes and the ledger that records them.

``User.wallet_balance`` is a denormalized copy of the ledger sum. It is only
ever changed by :func:`apply_wallet_change`, which writes the balance and
exactly one :class:`WalletTransaction` in the caller's transaction.
"""
from flask import current_app
from sqlalchemy import func, select
from storefront.extensions import db
from storefront.errors import Conflict, InsufficientBalance, NotFound, ValidationError
from storefront.models import (
    OrderStatus,
    User,
    WalletTransaction,
    WalletTransactionType,
    utcnow,
)
from storefront.services.pricing import compute_cashback, to_money, ZERO
from storefront.utils import guarded_update
import logging

logger = logging.getLogger(__name__)


def current_balance(user_id):
    balance = db.session.scalar(
        select(User.wallet_balance).where(User.id == user_id))
    if balance is None:
        raise NotFound('User not found')
    return to_money(balance)


def apply_wallet_change(user_id, amount, tx_type, description, order_id=None):
    """Add signed ``amount`` to the balance and append the ledger row.

    Debits that would make the balance negative raise
    :class:`InsufficientBalance`. The balance is swapped with a
    compare-and-set so a concurrent change makes this call fail instead of
    silently overwriting it.
    """
    amount = to_money(amount)
    if amount == ZERO:
        raise ValidationError('Wallet change amount cannot be zero')

    old_balance = current_balance(user_id)
    new_balance = old_balance + amount
    if new_balance < ZERO:
        raise InsufficientBalance(
            'Insufficient wallet balance',
            balance=float(old_balance),
            required=float(-amount),
        )

    swapped = guarded_update(
        User,
        [User.id == user_id, User.wallet_balance == old_balance],
        {'wallet_balance': new_balance},
    )
    if not swapped:
        raise Conflict('Wallet balance changed concurrently, please retry')

    transaction = WalletTransaction(
        user_id=user_id,
        amount=amount,
        balance_after=new_balance,
        type=tx_type,
        description=description,
        status='completed',
        order_id=order_id,
    )
    db.session.add(transaction)
    db.session.flush()

    logger.info(
        "Wallet %s for user %s: %s -> %s (order=%s)",
        tx_type.value,
        user_id,
        old_balance,
        new_balance,
        order_id,
    )
    return transaction


def debit_for_order(order, amount):
    return apply_wallet_change(
        order.user_id,
        -to_money(amount),
        WalletTransactionType.PAYMENT,
        f'Payment for order #{order.order_number}',
        order_id=order.id,
    )


def refund_for_order(order, amount, reason=None):
    description = f'Refund for order #{order.order_number}'
    if reason:
        description = f'{description}: {reason}'[:255]
    return apply_wallet_change(
        order.user_id,
        to_money(amount),
        WalletTransactionType.REFUND,
        description,
        order_id=order.id,
    )


def cashback_already_credited(order):
    if order.cashback_credited_at is not None:
        return True
    existing = WalletTransaction.query.filter_by(
        order_id=order.id,
        type=WalletTransactionType.CASHBACK,
    ).first()
    return existing is not None


def credit_cashback(order, now=None, rate=None):
    """Credit the buyer once for a delivered order.

    Returns the ledger row, or None when nothing was credited (guest order,
    not delivered, zero amount, or already credited).
    """
    if order.user_id is None or order.status != OrderStatus.DELIVERED:
        return None
    if cashback_already_credited(order):
        logger.info("Cashback for order %s already credited", order.id)
        return None

    if rate is None:
        rate = current_app.config['CASHBACK_RATE']
    amount = compute_cashback(order.total_amount, rate)
    if amount <= ZERO:
        return None

    transaction = apply_wallet_change(
        order.user_id,
        amount,
        WalletTransactionType.CASHBACK,
        f'Cashback for order #{order.order_number}',
        order_id=order.id,
    )
    order.cashback_amount = amount
    order.cashback_credited_at = now or utcnow()
    return transaction


def admin_adjust(user_id, amount, tx_type, description=None):
    """Manual deposit or withdrawal; ``amount`` is given as a positive value."""
    try:
        amount = to_money(amount)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError('Invalid amount')
    if amount <= ZERO:
        raise ValidationError('Amount must be greater than 0')

    if tx_type == WalletTransactionType.DEPOSIT:
        delta = amount
    elif tx_type == WalletTransactionType.WITHDRAWAL:
        delta = -amount
    else:
        raise ValidationError(
            'Manual adjustments must be a deposit or a withdrawal')

    description = str(description or '').strip() or (
        'Manual deposit' if delta > ZERO else 'Manual withdrawal')
    return apply_wallet_change(user_id, delta, tx_type, description[:255])


def ledger_balance(user_id):
    total = db.session.scalar(
        select(func.coalesce(func.sum(WalletTransaction.amount), 0))
        .where(WalletTransaction.user_id == user_id))
    return to_money(total)


def reconcile_wallets():
    """Users whose stored balance differs from the sum of their ledger."""
    sums = dict(
        db.session.execute(
            select(
                WalletTransaction.user_id,
                func.sum(WalletTransaction.amount),
            ).group_by(WalletTransaction.user_id)
        ).all()
    )
    drift = []
    for user in User.query.order_by(User.id).all():
        ledger = to_money(sums.get(user.id, 0))
        stored = to_money(user.wallet_balance)
        if ledger != stored:
            drift.append({
                'user_id': user.id,
                'email': user.email,
                'wallet_balance': float(stored),
                'ledger_balance': float(ledger),
                'difference': float(stored - ledger),
            })
    if drift:
        logger.warning("Wallet drift detected for %d users", len(drift))
    return drift
