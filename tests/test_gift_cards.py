import re
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from storefront.errors import Conflict, NotFound, ValidationError
from storefront.extensions import db
from storefront.models import (
    GiftCard,
    GiftCardDenomination,
    ProductType,
    UserRole,
    WalletTransaction,
    WalletTransactionType,
    utcnow,
)
from storefront.services import gift_card_service, wallet_service

CODE_PATTERN = re.compile(r'^GC-[A-HJ-NP-Z2-9]{4}-[A-HJ-NP-Z2-9]{4}-'
                          r'[A-HJ-NP-Z2-9]{4}$')


@pytest.fixture
def denomination(make_product):
    platform = make_product(
        name='Steam Wallet', price='0', stock=0,
        product_type=ProductType.GIFT_CARD)
    denomination = GiftCardDenomination(
        platform_id=platform.id, name='Steam 50', value=Decimal('50.00'))
    db.session.add(denomination)
    db.session.commit()
    return denomination


def test_generated_codes_use_unambiguous_alphabet():
    for _ in range(50):
        assert CODE_PATTERN.match(gift_card_service.generate_code())


def test_batch_creates_unique_codes_and_adds_stock(denomination):
    cards = gift_card_service.create_batch(denomination, 25)
    db.session.commit()

    codes = {card.code for card in cards}
    assert len(codes) == 25
    assert all(CODE_PATTERN.match(code) for code in codes)
    assert all(card.value == Decimal('50.00') for card in cards)
    assert denomination.stock == 25
    assert GiftCard.query.filter_by(
        denomination_id=denomination.id).count() == 25


def test_batch_adds_to_stock_changed_elsewhere(denomination):
    assert denomination.stock == 0
    db.session.execute(
        update(GiftCardDenomination)
        .where(GiftCardDenomination.id == denomination.id)
        .values(stock=5)
        .execution_options(synchronize_session=False))

    gift_card_service.create_batch(denomination, 2)
    gift_card_service.create_gift_card(denomination=denomination)
    db.session.commit()

    assert db.session.get(GiftCardDenomination, denomination.id).stock == 8


@pytest.mark.parametrize('count', [0, 101, '5', True])
def test_batch_count_bounds(denomination, count):
    with pytest.raises(ValidationError):
        gift_card_service.create_batch(denomination, count)


def test_batch_needs_active_denomination(denomination):
    denomination.active = False
    with pytest.raises(ValidationError):
        gift_card_service.create_batch(denomination, 1)


def test_explicit_code_must_be_unique(denomination):
    gift_card_service.create_gift_card(
        denomination=denomination, code='gc-fixed-code')
    db.session.commit()

    with pytest.raises(Conflict):
        gift_card_service.create_gift_card(value='10', code='GC-FIXED-CODE')


def test_redeem_credits_wallet(make_user, denomination):
    user = make_user(balance='5')
    card, = gift_card_service.create_batch(denomination, 1)
    db.session.commit()

    redeemed, tx = gift_card_service.redeem(card.code.lower(), user)
    db.session.commit()

    assert redeemed.is_redeemed
    assert redeemed.redeemed_by_user_id == user.id
    assert tx.type == WalletTransactionType.GIFT_CARD
    assert tx.amount == Decimal('50.00')
    assert tx.balance_after == Decimal('55.00')
    assert wallet_service.current_balance(user.id) == Decimal('55.00')
    assert db.session.get(GiftCardDenomination, denomination.id).stock == 0


def test_card_redeems_only_once(make_user, denomination):
    first = make_user()
    second = make_user()
    card = gift_card_service.create_gift_card(value='20')
    db.session.commit()

    gift_card_service.redeem(card.code, first)
    db.session.commit()

    with pytest.raises(ValidationError):
        gift_card_service.redeem(card.code, second)
    assert wallet_service.current_balance(second.id) == Decimal('0.00')
    assert WalletTransaction.query.count() == 1


def test_expired_and_inactive_cards_are_refused(make_user):
    user = make_user()
    expired = gift_card_service.create_gift_card(
        value='10', expiry_date=utcnow() - timedelta(days=1))
    inactive = gift_card_service.create_gift_card(value='10', is_active=False)
    db.session.commit()

    with pytest.raises(ValidationError, match='expired'):
        gift_card_service.redeem(expired.code, user)
    with pytest.raises(ValidationError, match='not active'):
        gift_card_service.redeem(inactive.code, user)
    with pytest.raises(NotFound):
        gift_card_service.redeem('GC-NOPE-NOPE-NOPE', user)
    assert wallet_service.current_balance(user.id) == Decimal('0.00')


def test_redeem_endpoint(client, make_user, login):
    user = make_user()
    card = gift_card_service.create_gift_card(value='30')
    db.session.commit()
    login(user)

    response = client.post('/api/gift-cards/redeem', json={'code': card.code})

    assert response.status_code == 200, response.get_json()
    body = response.get_json()
    assert body['amount'] == 30.0
    assert body['balance'] == 30.0
    assert body['transaction']['type'] == 'gift_card'

    again = client.post('/api/gift-cards/redeem', json={'code': card.code})
    assert again.status_code == 400


def test_redeem_requires_login(client):
    response = client.post(
        '/api/gift-cards/redeem', json={'code': 'GC-AAAA-BBBB-CCCC'})
    assert response.status_code == 401


def test_batch_endpoint_is_admin_only(client, make_user, login, denomination):
    login(make_user(role=UserRole.MANAGER))
    denied = client.post('/api/gift-cards/batch', json={
        'denomination_id': denomination.id, 'count': 3})
    assert denied.status_code == 403


def test_batch_endpoint(client, make_user, login, denomination):
    login(make_user(role=UserRole.ADMIN))

    response = client.post('/api/gift-cards/batch', json={
        'denomination_id': denomination.id, 'count': 3})

    assert response.status_code == 201
    body = response.get_json()
    assert body['created'] == 3
    assert body['denomination']['stock'] == 3


def test_public_denomination_listing_hides_inactive(client, denomination):
    hidden = GiftCardDenomination(
        platform_id=denomination.platform_id, name='Steam 20',
        value=Decimal('20.00'), active=False)
    db.session.add(hidden)
    db.session.commit()

    response = client.get('/api/gift-card-denominations')

    names = [d['name'] for d in response.get_json()['items']]
    assert names == ['Steam 50']


def test_delete_endpoint_takes_card_out_of_stock(
        client, make_user, login, denomination):
    kept, deleted = gift_card_service.create_batch(denomination, 2)
    kept.is_redeemed = True
    db.session.commit()
    login(make_user(role=UserRole.ADMIN))

    refused = client.delete(f'/api/gift-cards/{kept.id}')
    assert refused.status_code == 400

    response = client.delete(f'/api/gift-cards/{deleted.id}')
    assert response.status_code == 200
    assert db.session.get(GiftCardDenomination, denomination.id).stock == 1
    assert GiftCard.query.count() == 1
