from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from conftest import checkout_payload
from storefront.errors import (
    Forbidden,
    InsufficientBalance,
    InvalidTransition,
    ValidationError,
)
from storefront.extensions import db
from storefront.models import (
    AuditLog,
    GameCode,
    OrderStatus,
    PaymentStatus,
    Product,
    UserRole,
    WalletTransaction,
    WalletTransactionType,
    utcnow,
)
from storefront.services import order_service, wallet_service


@pytest.fixture
def place_order(make_product):
    def _place_order(user=None, method='bank_transfer', price='50.00',
                     stock=5, **extra):
        product = make_product(price=price, stock=stock)
        data = checkout_payload(product, method=method, **extra)
        order = order_service.create_order(data, user=user)
        db.session.commit()
        return order, product

    return _place_order


def test_payment_expiry_predicate(place_order):
    order, _ = place_order()
    deadline = order.payment_deadline

    assert not order_service.is_payment_expired(order, deadline)
    assert order_service.is_payment_expired(
        order, deadline + timedelta(seconds=1))


def test_lazy_auto_cancel_after_deadline(place_order):
    order, product = place_order(stock=5)
    assert product.stock == 4
    later = order.created_at + timedelta(days=5, seconds=1)

    assert order_service.expire_if_overdue(order, now=later)
    db.session.commit()

    assert order.status == OrderStatus.CANCELLED
    assert order.cancelled_reason == 'Payment deadline expired'
    assert db.session.get(Product, product.id).stock == 5
    # A second check is a no-op
    assert not order_service.expire_if_overdue(order, now=later)


def test_not_cancelled_before_deadline(place_order):
    order, _ = place_order()
    almost = order.created_at + timedelta(days=4, hours=23)

    assert not order_service.expire_if_overdue(order, now=almost)
    assert order.status == OrderStatus.PENDING


def test_cod_and_paid_orders_never_expire(place_order):
    cod_order, _ = place_order(method='cash_on_delivery')
    far_future = utcnow() + timedelta(days=60)
    assert not order_service.expire_if_overdue(cod_order, now=far_future)

    order, _ = place_order()
    order_service.mark_paid(order)
    assert not order_service.expire_if_overdue(order, now=far_future)


def test_auto_cancel_refunds_wallet_portion(place_order, make_user):
    user = make_user(balance='30')
    order, _ = place_order(user=user, wallet_amount=20)
    assert wallet_service.current_balance(user.id) == Decimal('10.00')

    later = order.payment_deadline + timedelta(seconds=1)
    order_service.expire_if_overdue(order, now=later)
    db.session.commit()

    assert wallet_service.current_balance(user.id) == Decimal('30.00')
    refund = WalletTransaction.query.filter_by(
        order_id=order.id, type=WalletTransactionType.REFUND).one()
    assert refund.amount == Decimal('20.00')


def test_sweep_cancels_overdue_orders(place_order):
    overdue, _ = place_order()
    fresh, _ = place_order()
    overdue.payment_deadline = utcnow() - timedelta(minutes=1)
    db.session.commit()

    expired = order_service.expire_overdue_orders()
    db.session.commit()

    assert [o.id for o in expired] == [overdue.id]
    assert fresh.status == OrderStatus.PENDING


def test_mark_paid_then_delivered_credits_cashback_once(
        place_order, make_user, stock_codes):
    user = make_user()
    order, product = place_order(user=user, price='45.00')
    stock_codes(product)

    order_service.mark_paid(order)
    assert order.payment_status == PaymentStatus.COMPLETED
    order_service.attach_game_codes(order, [{'product_id': product.id}])
    order_service.mark_delivered(order)
    db.session.commit()

    assert order.status == OrderStatus.DELIVERED
    assert order.cashback_amount == Decimal('1.35')
    assert wallet_service.current_balance(user.id) == Decimal('1.35')

    # Re-triggering delivery must not pay a second time
    order_service.mark_delivered(order)
    order_service.change_status(order, 'delivered')
    db.session.commit()

    cashback = WalletTransaction.query.filter_by(
        order_id=order.id, type=WalletTransactionType.CASHBACK).all()
    assert len(cashback) == 1
    assert wallet_service.current_balance(user.id) == Decimal('1.35')


def test_cashback_excludes_wallet_funded_part(
        place_order, make_user, stock_codes):
    user = make_user(balance='20')
    order, product = place_order(user=user, price='50.00', wallet_amount=20)
    stock_codes(product)

    order_service.mark_paid(order)
    order_service.attach_game_codes(order, [{'product_id': product.id}])
    order_service.mark_delivered(order)

    # 3% of the 30.00 still due
    assert order.cashback_amount == Decimal('0.90')


def test_guest_orders_get_no_cashback(place_order, stock_codes):
    order, product = place_order()
    stock_codes(product)
    order_service.mark_paid(order)
    order_service.attach_game_codes(order, [{'product_id': product.id}])
    order_service.mark_delivered(order)

    assert order.status == OrderStatus.DELIVERED
    assert order.cashback_amount is None


def test_delivery_requires_game_codes(place_order):
    order, _ = place_order()
    order_service.mark_paid(order)

    with pytest.raises(InvalidTransition):
        order_service.mark_delivered(order)


def test_bank_transfer_cannot_skip_payment(place_order, stock_codes):
    order, product = place_order()
    stock_codes(product)
    order_service.attach_game_codes(order, [{'product_id': product.id}])

    with pytest.raises(InvalidTransition):
        order_service.mark_delivered(order)


def test_cod_goes_straight_to_delivered(place_order, stock_codes):
    order, product = place_order(method='cash_on_delivery')
    stock_codes(product)

    order_service.attach_game_codes(order, [{'product_id': product.id}])
    order_service.mark_delivered(order)

    assert order.status == OrderStatus.DELIVERED
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.paid_at is not None


def test_cod_order_cannot_be_marked_paid(place_order):
    order, _ = place_order(method='cash_on_delivery')

    with pytest.raises(InvalidTransition):
        order_service.change_status(order, 'paid')

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.paid_at is None


def test_cancel_requires_reason(place_order):
    order, _ = place_order()
    with pytest.raises(ValidationError):
        order_service.cancel_order(order, '  ')


def test_cancel_paid_order_refunds_and_restocks(place_order, make_user):
    user = make_user(balance='50')
    order, product = place_order(user=user, method='wallet', stock=2)
    assert order.status == OrderStatus.PAID

    order_service.cancel_order(order, 'Customer asked')
    db.session.commit()

    assert order.status == OrderStatus.CANCELLED
    assert order.payment_status == PaymentStatus.REFUNDED
    assert order.cancelled_reason == 'Customer asked'
    assert db.session.get(Product, product.id).stock == 2
    assert wallet_service.current_balance(user.id) == Decimal('50.00')


def test_cancel_keeps_stock_sold_by_other_checkouts(place_order):
    order, product = place_order(stock=5)
    assert product.stock == 4
    # Another checkout takes a unit behind this session's back
    db.session.execute(
        update(Product)
        .where(Product.id == product.id)
        .values(stock=Product.stock - 1)
        .execution_options(synchronize_session=False))

    order_service.cancel_order(order, 'Duplicate')
    db.session.commit()

    assert db.session.get(Product, product.id).stock == 4


def test_cancel_puts_attached_codes_back(place_order, stock_codes):
    order, product = place_order()
    code, = stock_codes(product)
    order_service.attach_game_codes(order, [{'product_id': product.id}])
    db.session.commit()
    assert code.is_used and code.order_id == order.id

    order_service.cancel_order(order, 'Customer asked')
    db.session.commit()

    code = db.session.get(GameCode, code.id)
    assert code.is_used is False
    assert code.order_id is None
    assert code.assigned_at is None
    assert order.game_codes.count() == 0

    # The freed code goes to the next order
    other = order_service.create_order(checkout_payload(product))
    attached = order_service.attach_game_codes(
        other, [{'product_id': product.id}])
    assert attached[0].id == code.id


def test_auto_cancel_puts_attached_codes_back(place_order, stock_codes):
    order, product = place_order()
    code, = stock_codes(product)
    order_service.attach_game_codes(order, [{'product_id': product.id}])

    order_service.expire_if_overdue(
        order, now=order.payment_deadline + timedelta(seconds=1))
    db.session.commit()

    code = db.session.get(GameCode, code.id)
    assert code.is_used is False
    assert code.order_id is None


def test_delivered_order_cannot_be_cancelled(place_order, stock_codes):
    order, product = place_order(method='cash_on_delivery')
    stock_codes(product)
    order_service.attach_game_codes(order, [{'product_id': product.id}])
    order_service.mark_delivered(order)

    with pytest.raises(InvalidTransition):
        order_service.cancel_order(order, 'Too late')


def test_restore_cancelled_order(place_order, make_user):
    user = make_user(balance='40')
    order, product = place_order(user=user, wallet_amount=10, stock=3)
    order_service.cancel_order(order, 'Duplicate')
    db.session.commit()
    assert wallet_service.current_balance(user.id) == Decimal('40.00')

    order_service.restore_order(order)
    db.session.commit()

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.cancelled_reason is None
    assert order.payment_deadline > utcnow() + timedelta(days=4)
    assert db.session.get(Product, product.id).stock == 2
    assert wallet_service.current_balance(user.id) == Decimal('30.00')


def test_restored_wallet_order_is_paid_again(place_order, make_user):
    user = make_user(balance='50')
    order, _ = place_order(user=user, method='wallet')
    order_service.cancel_order(order, 'Duplicate')
    db.session.commit()

    order_service.restore_order(order)
    db.session.commit()

    assert order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.paid_at is not None
    assert order.payment_deadline is None
    assert wallet_service.current_balance(user.id) == Decimal('0.00')


def test_restore_fails_without_stock(place_order):
    order, product = place_order(stock=1)
    order_service.cancel_order(order, 'Duplicate')
    db.session.commit()
    product.stock = 0
    db.session.commit()

    with pytest.raises(ValidationError):
        order_service.restore_order(order)


def test_change_status_rejects_unknown_value(place_order):
    order, _ = place_order()
    with pytest.raises(ValidationError):
        order_service.change_status(order, 'shipped')


def test_attach_named_code_and_next_inventory_code(place_order, stock_codes):
    order, product = place_order()
    stock_codes(product, count=2)

    attached = order_service.attach_game_codes(order, [
        {'product_id': product.id, 'code': 'MANUAL-KEY'},
        {'product_id': product.id},
    ])

    assert [c.code for c in attached] == ['MANUAL-KEY', f'KEY-{product.id}-0']
    assert all(c.is_used and c.order_id == order.id for c in attached)


def test_status_endpoint_enforces_permissions(
        client, place_order, make_user, login):
    order, _ = place_order()
    customer = make_user()
    login(customer)

    response = client.patch(
        f'/api/orders/{order.id}/status', json={'status': 'paid'})
    assert response.status_code == 403


def test_status_endpoint_transitions(client, place_order, make_user, login):
    order, _ = place_order()
    manager = make_user(role=UserRole.MANAGER)
    login(manager)

    bad = client.patch(
        f'/api/orders/{order.id}/status', json={'status': 'shipped'})
    assert bad.status_code == 400

    response = client.patch(
        f'/api/orders/{order.id}/status', json={'status': 'paid'})
    assert response.status_code == 200
    assert response.get_json()['order']['status'] == 'paid'

    no_reason = client.patch(
        f'/api/orders/{order.id}/status', json={'status': 'cancelled'})
    assert no_reason.status_code == 400

    cancelled = client.patch(f'/api/orders/{order.id}/status', json={
        'status': 'cancelled', 'reason': 'Fraud check'})
    assert cancelled.get_json()['order']['payment_status'] == 'refunded'

    restored = client.post(f'/api/orders/{order.id}/restore')
    assert restored.get_json()['order']['status'] == 'pending'
    assert AuditLog.query.filter_by(action='ORDER_RESTORE').count() == 1


def test_game_codes_endpoint_delivers(
        client, place_order, make_user, login, stock_codes):
    user = make_user()
    order, product = place_order(user=user, price='100.00')
    stock_codes(product)
    manager = make_user(role=UserRole.MANAGER)
    login(manager)

    response = client.post(f'/api/orders/{order.id}/game-codes', json={
        'codes': [{'product_id': product.id}],
    })

    assert response.status_code == 200, response.get_json()
    body = response.get_json()
    assert body['order']['status'] == 'delivered'
    assert body['order']['cashback_amount'] == 3.0
    assert wallet_service.current_balance(user.id) == Decimal('3.00')


def test_reading_overdue_order_cancels_it(
        client, place_order, make_user, login):
    user = make_user()
    order, _ = place_order(user=user)
    order.payment_deadline = utcnow() - timedelta(seconds=1)
    db.session.commit()
    login(user)

    response = client.get(f'/api/orders/{order.id}')

    assert response.get_json()['status'] == 'cancelled'
    assert response.get_json()['cancelled_reason'] == \
        'Payment deadline expired'
    audit = AuditLog.query.filter_by(
        action='ORDER_AUTO_CANCEL_UNPAID').one()
    assert audit.actor_role == 'SYSTEM'


def test_expire_orders_command(app, place_order):
    order, _ = place_order()
    order.payment_deadline = utcnow() - timedelta(seconds=1)
    db.session.commit()

    result = app.test_cli_runner().invoke(args=['expire-orders'])

    assert 'Expired 1 orders' in result.output
    assert order.status == OrderStatus.CANCELLED


def test_status_endpoint_refuses_paid_for_cod(
        client, place_order, make_user, login):
    order, _ = place_order(method='cash_on_delivery')
    login(make_user(role=UserRole.MANAGER))

    response = client.patch(
        f'/api/orders/{order.id}/status', json={'status': 'paid'})

    assert response.status_code == 400
    assert order.status == OrderStatus.PENDING


def test_pay_with_wallet_in_two_steps(place_order, make_user):
    user = make_user(balance='100')
    order, _ = place_order(user=user, price='50.00')

    order_service.pay_with_wallet(order, user, amount='20')
    assert order.status == OrderStatus.PENDING
    assert order.wallet_amount_used == Decimal('20.00')
    assert order.total_amount == Decimal('30.00')
    assert order.subtotal_before_discount - order.promo_discount \
        - order.wallet_amount_used + order.cod_fee == order.total_amount

    order_service.pay_with_wallet(order, user)
    db.session.commit()

    assert order.status == OrderStatus.PAID
    assert order.payment_status == PaymentStatus.COMPLETED
    assert order.payment_deadline is None
    assert order.wallet_amount_used == Decimal('50.00')
    assert order.total_amount == Decimal('0.00')
    assert wallet_service.current_balance(user.id) == Decimal('50.00')
    payments = WalletTransaction.query.filter_by(
        order_id=order.id, type=WalletTransactionType.PAYMENT).count()
    assert payments == 2


def test_pay_with_wallet_is_refunded_on_cancel(place_order, make_user):
    user = make_user(balance='60')
    order, _ = place_order(user=user, price='50.00', wallet_amount=10)
    order_service.pay_with_wallet(order, user, amount=15)
    assert wallet_service.current_balance(user.id) == Decimal('35.00')

    order_service.cancel_order(order, 'Changed my mind')
    db.session.commit()

    assert wallet_service.current_balance(user.id) == Decimal('60.00')


def test_pay_with_wallet_rules(place_order, make_user):
    owner = make_user(balance='10')
    stranger = make_user(balance='100')
    order, _ = place_order(user=owner, price='50.00')

    with pytest.raises(Forbidden):
        order_service.pay_with_wallet(order, stranger)
    with pytest.raises(InsufficientBalance):
        order_service.pay_with_wallet(order, owner)
    for amount in (0, -5, '60', 'abc', True):
        with pytest.raises(ValidationError):
            order_service.pay_with_wallet(order, owner, amount=amount)

    cod_order, _ = place_order(user=owner, method='cash_on_delivery')
    with pytest.raises(InvalidTransition):
        order_service.pay_with_wallet(cod_order, owner, amount=5)

    assert order.total_amount == Decimal('50.00')
    assert wallet_service.current_balance(owner.id) == Decimal('10.00')


def test_pay_with_wallet_after_deadline_is_refused(place_order, make_user):
    user = make_user(balance='100')
    order, _ = place_order(user=user)
    later = order.payment_deadline + timedelta(seconds=1)

    with pytest.raises(InvalidTransition):
        order_service.pay_with_wallet(order, user, now=later)
    assert order.status == OrderStatus.CANCELLED
