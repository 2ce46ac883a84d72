import pytest

from conftest import checkout_payload
from storefront.extensions import db
from storefront.models import AuditLog
from storefront.services import order_service


@pytest.fixture
def guest_order(make_product):
    order = order_service.create_order(checkout_payload(make_product()))
    db.session.commit()
    return order


@pytest.mark.parametrize('reference', [
    'SD{id:06d}', 'sd{id:06d}', 'SO-{id:06d}', '{id}',
])
def test_parse_order_reference_accepts_known_formats(reference):
    assert order_service.parse_order_reference(reference.format(id=42)) == 42


def test_parse_order_reference_rejects_garbage():
    assert order_service.parse_order_reference('SD-abc') is None
    assert order_service.parse_order_reference('') is None


def test_verify_then_view(client, guest_order):
    assert client.get(f'/api/orders/{guest_order.id}').status_code == 403

    response = client.post('/api/orders/verify', json={
        'order_number': guest_order.order_number,
        'email': 'BUYER@example.com ',
        'phone': '0612345678',
    })

    assert response.status_code == 200
    assert response.get_json() == {
        'success': True, 'order_id': guest_order.id}
    assert client.get(f'/api/orders/{guest_order.id}').status_code == 200


def test_verify_mismatch_is_audited(client, guest_order):
    response = client.post('/api/orders/verify', json={
        'order_number': guest_order.order_number,
        'email': 'buyer@example.com',
        'phone': '0699999999',
    })

    assert response.status_code == 403
    audit = AuditLog.query.filter_by(action='ORDER_VERIFY_FAILED').one()
    assert audit.target_id == guest_order.id
    assert client.get(f'/api/orders/{guest_order.id}').status_code == 403


def test_verify_unknown_order(client):
    response = client.post('/api/orders/verify', json={
        'order_number': 'SD999999',
        'email': 'buyer@example.com',
        'phone': '0612345678',
    })
    assert response.status_code == 404


def test_verify_requires_all_fields(client, guest_order):
    response = client.post('/api/orders/verify', json={
        'order_number': guest_order.order_number,
        'email': 'buyer@example.com',
    })
    assert response.status_code == 400


@pytest.mark.parametrize('field, value', [
    ('email', 123),
    ('phone', ['0612345678']),
])
def test_verify_with_non_string_details_is_refused(
        client, guest_order, field, value):
    payload = {
        'order_number': guest_order.order_number,
        'email': 'buyer@example.com',
        'phone': '0612345678',
    }
    payload[field] = value

    response = client.post('/api/orders/verify', json=payload)

    assert response.status_code == 403
