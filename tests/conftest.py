"""
Shared fixtures: an app on in-memory SQLite, a fresh schema per test, and
small factories for users, products and promo codes.
"""
from decimal import Decimal

import pytest

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db
from storefront.models import (
    DiscountType,
    GameCode,
    Product,
    ProductEdition,
    ProductType,
    PromoCode,
    User,
    UserRole,
)

PASSWORD = 'secret-pass-123'


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(role=UserRole.CUSTOMER, balance='0', email=None,
                   **fields):
        counter['n'] += 1
        user = User(
            email=email or f'user{counter["n"]}@example.com',
            username=f'user{counter["n"]}',
            role=role,
            wallet_balance=Decimal(balance),
            first_name=fields.pop('first_name', 'Test'),
            last_name=fields.pop('last_name', 'User'),
            phone_number=fields.pop('phone_number', '0600000000'),
            city=fields.pop('city', 'Casablanca'),
            **fields
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_product(app):
    def _make_product(name='Test Game', price='50.00', stock=10, **fields):
        product = Product(
            name=name,
            description=fields.pop('description', ''),
            price=Decimal(price),
            platform=fields.pop('platform', 'PC'),
            stock=stock,
            product_type=fields.pop('product_type', ProductType.GAME),
            **fields
        )
        db.session.add(product)
        db.session.commit()
        return product

    return _make_product


@pytest.fixture
def make_edition(app):
    def _make_edition(product, name='Deluxe', price='80.00', stock=5):
        edition = ProductEdition(
            product_id=product.id,
            name=name,
            description='',
            price=Decimal(price),
            stock=stock,
        )
        product.has_editions = True
        db.session.add(edition)
        db.session.commit()
        return edition

    return _make_edition


@pytest.fixture
def make_promo(app):
    def _make_promo(code='WELCOME10', discount_type=DiscountType.PERCENTAGE,
                    value='10', **fields):
        promo = PromoCode(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(value),
            used_count=fields.pop('used_count', 0),
            is_active=fields.pop('is_active', True),
            **fields
        )
        db.session.add(promo)
        db.session.commit()
        return promo

    return _make_promo


@pytest.fixture
def stock_codes(app):
    def _stock_codes(product, count=1, edition=None):
        codes = []
        for i in range(count):
            code = GameCode(
                product_id=product.id,
                edition_id=edition.id if edition else None,
                code=f'KEY-{product.id}-{i}',
                platform=product.platform,
                product_type=product.product_type,
            )
            db.session.add(code)
            codes.append(code)
        db.session.commit()
        return codes

    return _stock_codes


@pytest.fixture
def login(client):
    def _login(user, password=PASSWORD):
        response = client.post('/api/auth/login', json={
            'email': user.email,
            'password': password,
        })
        assert response.status_code == 200, response.get_json()
        return response

    return _login


def checkout_payload(product, quantity=1, method='bank_transfer', **extra):
    payload = {
        'items': [{'product_id': product.id, 'quantity': quantity}],
        'email': 'buyer@example.com',
        'first_name': 'Amina',
        'last_name': 'Benali',
        'phone_number': '0612345678',
        'city': 'Rabat',
        'payment_method': method,
    }
    payload.update(extra)
    return payload
