"""Money arithmetic for checkout.

Everything here is pure: amounts in, amounts out, no database access. Order
of application is fixed: promo discount on the subtotal first, then the
wallet amount, then the cash-on-delivery fee on top.
"""
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from storefront.models import DiscountType

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

OrderTotals = namedtuple(
    'OrderTotals',
    ['subtotal', 'promo_discount', 'after_promo', 'wallet_amount',
     'cod_fee', 'total'],
)


def to_money(value):
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_promo_discount(discount_type, discount_value, subtotal):
    subtotal = to_money(subtotal)
    value = to_money(discount_value)
    if subtotal <= ZERO or value <= ZERO:
        return ZERO

    if isinstance(discount_type, str):
        discount_type = DiscountType(discount_type)

    if discount_type == DiscountType.PERCENTAGE:
        discount = to_money(subtotal * min(value, Decimal('100')) / 100)
    else:
        discount = value
    return min(discount, subtotal)


def compute_order_totals(subtotal, promo_discount=ZERO, wallet_amount=ZERO,
                         cod_fee=ZERO):
    subtotal = to_money(subtotal)
    promo_discount = min(to_money(promo_discount), subtotal)
    after_promo = subtotal - promo_discount
    wallet_amount = to_money(wallet_amount)
    if wallet_amount < ZERO or wallet_amount > after_promo:
        raise ValueError('wallet amount must be between 0 and the amount due')
    cod_fee = to_money(cod_fee)
    total = after_promo - wallet_amount + cod_fee
    return OrderTotals(
        subtotal=subtotal,
        promo_discount=promo_discount,
        after_promo=after_promo,
        wallet_amount=wallet_amount,
        cod_fee=cod_fee,
        total=total,
    )


def compute_cashback(total_amount, rate):
    amount = to_money(total_amount)
    if amount <= ZERO:
        return ZERO
    return to_money(amount * Decimal(str(rate)))
