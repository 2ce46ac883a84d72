from decimal import Decimal

import pytest

from storefront.models import DiscountType
from storefront.services.pricing import (
    compute_cashback,
    compute_order_totals,
    compute_promo_discount,
    to_money,
)


def test_to_money_rounds_half_up():
    assert to_money('1.005') == Decimal('1.01')
    assert to_money(2) == Decimal('2.00')
    assert to_money(None) == Decimal('0.00')


def test_percentage_discount():
    discount = compute_promo_discount(
        DiscountType.PERCENTAGE, Decimal('10'), Decimal('50'))
    assert discount == Decimal('5.00')


def test_fixed_discount_is_capped_at_subtotal():
    discount = compute_promo_discount(
        DiscountType.FIXED, Decimal('80'), Decimal('50'))
    assert discount == Decimal('50.00')


def test_percentage_over_hundred_is_capped():
    discount = compute_promo_discount('percentage', '150', '40')
    assert discount == Decimal('40.00')


def test_totals_apply_promo_then_wallet_then_cod_fee():
    totals = compute_order_totals(
        Decimal('100'), Decimal('10'), Decimal('20'), Decimal('30'))
    assert totals.after_promo == Decimal('90.00')
    assert totals.total == Decimal('100.00')


def test_wallet_cannot_exceed_amount_due():
    with pytest.raises(ValueError):
        compute_order_totals(Decimal('50'), Decimal('5'), Decimal('46'))


def test_cashback_is_three_percent():
    assert compute_cashback(Decimal('45.00'), '0.03') == Decimal('1.35')
    assert compute_cashback(Decimal('0'), '0.03') == Decimal('0.00')
