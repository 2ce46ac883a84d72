from decimal import Decimal

import pytest

from storefront.errors import InsufficientBalance, ValidationError
from storefront.extensions import db
from storefront.models import (
    AuditLog,
    User,
    UserRole,
    WalletTransaction,
    WalletTransactionType,
)
from storefront.services import wallet_service


def test_every_change_writes_balance_and_ledger(make_user):
    user = make_user()

    wallet_service.apply_wallet_change(
        user.id, '25.00', WalletTransactionType.DEPOSIT, 'Top up')
    wallet_service.apply_wallet_change(
        user.id, '-10.50', WalletTransactionType.PAYMENT, 'Purchase')
    db.session.commit()

    assert wallet_service.current_balance(user.id) == Decimal('14.50')
    assert wallet_service.ledger_balance(user.id) == Decimal('14.50')
    rows = WalletTransaction.query.filter_by(user_id=user.id).order_by(
        WalletTransaction.id).all()
    assert [r.balance_after for r in rows] == [
        Decimal('25.00'), Decimal('14.50')]


def test_overdraft_is_refused(make_user):
    user = make_user(balance='0')
    wallet_service.apply_wallet_change(
        user.id, '5', WalletTransactionType.DEPOSIT, 'Top up')

    with pytest.raises(InsufficientBalance) as excinfo:
        wallet_service.apply_wallet_change(
            user.id, '-6', WalletTransactionType.PAYMENT, 'Purchase')

    assert excinfo.value.extra == {'balance': 5.0, 'required': 6.0}
    assert WalletTransaction.query.count() == 1


def test_zero_change_is_rejected(make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        wallet_service.apply_wallet_change(
            user.id, 0, WalletTransactionType.DEPOSIT, 'Nothing')


def test_admin_adjust_only_deposits_and_withdrawals(make_user):
    user = make_user()
    with pytest.raises(ValidationError):
        wallet_service.admin_adjust(
            user.id, '10', WalletTransactionType.CASHBACK)
    with pytest.raises(ValidationError):
        wallet_service.admin_adjust(
            user.id, '-10', WalletTransactionType.DEPOSIT)


def test_reconcile_reports_drift(make_user):
    consistent = make_user()
    wallet_service.admin_adjust(
        consistent.id, '10', WalletTransactionType.DEPOSIT)
    drifting = make_user(balance='7.00')
    db.session.commit()

    drift = wallet_service.reconcile_wallets()

    assert [d['user_id'] for d in drift] == [drifting.id]
    assert drift[0]['difference'] == 7.0


def test_admin_deposit_endpoint(client, make_user, login):
    admin = make_user(role=UserRole.ADMIN)
    customer = make_user()
    login(admin)

    response = client.post('/api/wallet/transactions', json={
        'user_id': customer.id,
        'type': 'deposit',
        'amount': 40,
        'description': 'Compensation',
    })

    assert response.status_code == 201, response.get_json()
    body = response.get_json()
    assert body['amount'] == 40.0
    assert body['balance_after'] == 40.0
    assert db.session.get(User, customer.id).wallet_balance == Decimal('40')
    audit = AuditLog.query.filter_by(action='WALLET_ADJUST').one()
    assert audit.target_id == customer.id


def test_admin_withdrawal_cannot_overdraw(client, make_user, login):
    admin = make_user(role=UserRole.ADMIN)
    customer = make_user()
    wallet_service.admin_adjust(
        customer.id, '15', WalletTransactionType.DEPOSIT)
    db.session.commit()
    login(admin)

    response = client.post('/api/wallet/transactions', json={
        'user_id': customer.id,
        'type': 'withdrawal',
        'amount': 20,
    })

    assert response.status_code == 400
    assert response.get_json()['balance'] == 15.0
    assert wallet_service.current_balance(customer.id) == Decimal('15.00')


def test_manager_cannot_adjust_wallets(client, make_user, login):
    manager = make_user(role=UserRole.MANAGER)
    customer = make_user()
    login(manager)

    response = client.post('/api/wallet/transactions', json={
        'user_id': customer.id, 'type': 'deposit', 'amount': 5})

    assert response.status_code == 403


def test_customer_reads_own_wallet_only(client, make_user, login):
    user = make_user(balance='12.50')
    other = make_user()
    login(user)

    own = client.get(f'/api/users/{user.id}/wallet/balance')
    assert own.status_code == 200
    assert own.get_json()['balance'] == 12.5

    assert client.get(
        f'/api/users/{other.id}/wallet/balance').status_code == 403
    assert client.get(
        f'/api/users/{other.id}/wallet/transactions').status_code == 403


def test_transaction_history_filters_by_type(client, make_user, login):
    user = make_user()
    wallet_service.admin_adjust(user.id, '30', WalletTransactionType.DEPOSIT)
    wallet_service.apply_wallet_change(
        user.id, '-5', WalletTransactionType.PAYMENT, 'Purchase')
    db.session.commit()
    login(user)

    response = client.get(
        f'/api/users/{user.id}/wallet/transactions?type=payment')

    body = response.get_json()
    assert body['total'] == 1
    assert body['items'][0]['type'] == 'payment'
    assert body['items'][0]['amount'] == -5.0


def test_reconcile_endpoint(client, make_user, login):
    admin = make_user(role=UserRole.ADMIN)
    login(admin)

    response = client.get('/api/admin/wallet/reconcile')

    assert response.status_code == 200
    assert response.get_json() == {'ok': True, 'drift': []}
