from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import checkout_payload
from storefront.errors import InvalidPromoCode
from storefront.extensions import db
from storefront.models import DiscountType, PromoCode, UserRole, utcnow
from storefront.services import order_service, promo_service


def _use(code, product, user=None, email='buyer@example.com'):
    order = order_service.create_order(
        checkout_payload(product, promo_code=code, email=email), user=user)
    db.session.commit()
    return order


def test_lookup_is_case_insensitive(make_promo):
    make_promo(code='SPRING')
    promo, discount = promo_service.validate_promo_code(
        ' spring ', Decimal('80'))
    assert promo.code == 'SPRING'
    assert discount == Decimal('8.00')


def test_unknown_code_is_404(app):
    with pytest.raises(InvalidPromoCode) as excinfo:
        promo_service.validate_promo_code('NOPE', Decimal('10'))
    assert excinfo.value.status_code == 404


def test_inactive_and_out_of_window_codes(make_promo):
    now = utcnow()
    make_promo(code='OFF', is_active=False)
    make_promo(code='SOON', start_date=now + timedelta(days=1))
    make_promo(code='OVER', end_date=now - timedelta(seconds=1))

    for code, message in (('OFF', 'no longer active'),
                          ('SOON', 'not valid yet'),
                          ('OVER', 'expired')):
        with pytest.raises(InvalidPromoCode, match=message):
            promo_service.validate_promo_code(code, Decimal('50'), now=now)


def test_minimum_order_amount(make_promo):
    make_promo(code='BIG', minimum_order_amount=Decimal('100'))

    with pytest.raises(InvalidPromoCode) as excinfo:
        promo_service.validate_promo_code('BIG', Decimal('99.99'))
    assert excinfo.value.extra['minimum_order_amount'] == 100.0

    _, discount = promo_service.validate_promo_code('BIG', Decimal('100'))
    assert discount == Decimal('10.00')


def test_global_cap(make_promo, make_product):
    make_promo(code='ONCE', max_uses=1)
    product = make_product(stock=5)

    _use('ONCE', product, email='first@example.com')

    with pytest.raises(InvalidPromoCode, match='maximum number of uses'):
        _use('ONCE', product, email='second@example.com')
    assert PromoCode.query.filter_by(code='ONCE').one().used_count == 1


def test_per_user_cap(make_promo, make_product, make_user):
    make_promo(code='MINE', max_uses_per_user=1)
    product = make_product(stock=5)
    user = make_user()
    other = make_user()

    _use('MINE', product, user=user)
    with pytest.raises(InvalidPromoCode, match='already used'):
        _use('MINE', product, user=user)
    db.session.rollback()

    _use('MINE', product, user=other)


def test_guest_cap_is_tracked_by_email(make_promo, make_product):
    make_promo(code='GUEST', max_uses_per_user=1)
    product = make_product(stock=5)

    _use('GUEST', product, email='Guest@Example.com')
    with pytest.raises(InvalidPromoCode):
        _use('GUEST', product, email='guest@example.com')
    db.session.rollback()

    _use('GUEST', product, email='someone@example.com')


def test_active_codes_skip_exhausted_ones(make_promo):
    make_promo(code='LIVE')
    make_promo(code='DONE', max_uses=2, used_count=2)
    make_promo(code='OFF', is_active=False)

    codes = [p.code for p in promo_service.active_promo_codes()]

    assert codes == ['LIVE']


def test_validate_endpoint(client, make_promo):
    make_promo(code='TAKE5', discount_type=DiscountType.FIXED, value='5')

    response = client.post('/api/promo-codes/validate', json={
        'code': 'take5', 'subtotal': 30})

    assert response.status_code == 200
    body = response.get_json()
    assert body['valid'] is True
    assert body['discount'] == 5.0
    assert body['total_after_discount'] == 25.0

    missing = client.post('/api/promo-codes/validate', json={'code': 'X'})
    assert missing.status_code == 404


def test_create_rejects_duplicates_and_bad_values(client, make_user, login):
    login(make_user(role=UserRole.ADMIN))

    created = client.post('/api/promo-codes', json={
        'code': 'summer',
        'discount_type': 'percentage',
        'discount_value': 15,
        'max_uses': 10,
    })
    assert created.status_code == 201, created.get_json()
    assert created.get_json()['code'] == 'SUMMER'

    duplicate = client.post('/api/promo-codes', json={
        'code': 'SUMMER', 'discount_type': 'fixed', 'discount_value': 5})
    assert duplicate.status_code == 409

    too_much = client.post('/api/promo-codes', json={
        'code': 'HUGE', 'discount_type': 'percentage', 'discount_value': 120})
    assert too_much.status_code == 400

    backwards = client.post('/api/promo-codes', json={
        'code': 'ODD', 'discount_type': 'fixed', 'discount_value': 5,
        'start_date': '2026-05-01T00:00:00Z',
        'end_date': '2026-04-01T00:00:00Z',
    })
    assert backwards.status_code == 400
    assert PromoCode.query.count() == 1


def test_manager_cannot_manage_promo_codes(client, make_user, login):
    login(make_user(role=UserRole.MANAGER))
    response = client.post('/api/promo-codes', json={
        'code': 'NOPE', 'discount_type': 'fixed', 'discount_value': 5})
    assert response.status_code == 403


def test_delete_used_code_deactivates_it(
        client, make_user, login, make_promo, make_product):
    used = make_promo(code='USED')
    unused = make_promo(code='FRESH')
    _use('USED', make_product())
    login(make_user(role=UserRole.ADMIN))

    response = client.delete(f'/api/promo-codes/{used.id}')
    assert response.get_json() == {
        'ok': True, 'deleted': False, 'deactivated': True}
    assert PromoCode.query.filter_by(code='USED').one().is_active is False

    response = client.delete(f'/api/promo-codes/{unused.id}')
    assert response.get_json()['deleted'] is True
    assert PromoCode.query.filter_by(code='FRESH').first() is None
