from decimal import Decimal
from sqlalchemy import func, or_
from storefront.extensions import db
from storefront.errors import (
    Conflict,
    InvalidPromoCode,
    NotFound,
    ValidationError,
)
from storefront.models import DiscountType, PromoCode, PromoCodeUsage, utcnow
from storefront.services.pricing import compute_promo_discount, to_money, ZERO
from storefront.utils import guarded_update, parse_bool, parse_datetime
import logging

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


def normalize_code(code):
    return str(code or '').strip().upper()


def find_promo_code(code, lock=False):
    code = normalize_code(code)
    if not code:
        return None
    query = PromoCode.query.filter(func.upper(PromoCode.code) == code)
    if lock:
        # Serializes concurrent checkouts on the same code where the
        # database supports row locks.
        query = query.with_for_update()
    return query.first()


def usage_count_for(promo, user_id=None, email=None):
    query = PromoCodeUsage.query.filter_by(promo_code_id=promo.id)
    if user_id is not None:
        query = query.filter(PromoCodeUsage.user_id == user_id)
    elif email:
        query = query.filter(
            PromoCodeUsage.user_id.is_(None),
            func.lower(PromoCodeUsage.email) == email.strip().lower(),
        )
    else:
        return 0
    return query.count()


def check_promo_code(promo, subtotal, user_id=None, email=None, now=None):
    """Raise InvalidPromoCode unless ``promo`` may be applied right now."""
    now = now or utcnow()

    if not promo.is_active:
        raise InvalidPromoCode('This promo code is no longer active')
    if promo.start_date and promo.start_date > now:
        raise InvalidPromoCode('This promo code is not valid yet')
    if promo.end_date and promo.end_date < now:
        raise InvalidPromoCode('This promo code has expired')
    if promo.max_uses is not None and promo.used_count >= promo.max_uses:
        raise InvalidPromoCode(
            'This promo code has reached its maximum number of uses')
    if promo.max_uses_per_user is not None:
        used = usage_count_for(promo, user_id=user_id, email=email)
        if used >= promo.max_uses_per_user:
            raise InvalidPromoCode(
                'You have already used this promo code the maximum '
                'number of times')
    if subtotal is not None and promo.minimum_order_amount is not None:
        if to_money(subtotal) < to_money(promo.minimum_order_amount):
            raise InvalidPromoCode(
                'Order amount is below the minimum required for this '
                'promo code',
                minimum_order_amount=float(promo.minimum_order_amount),
            )


def validate_promo_code(code, subtotal, user_id=None, email=None, now=None,
                        lock=False):
    """Return ``(promo, discount)`` for a code applicable to ``subtotal``."""
    promo = find_promo_code(code, lock=lock)
    if promo is None:
        raise InvalidPromoCode('Promo code not found', status_code=404)
    check_promo_code(promo, subtotal, user_id=user_id, email=email, now=now)
    discount = compute_promo_discount(
        promo.discount_type, promo.discount_value, subtotal)
    return promo, discount


def redeem_promo_code(promo, order, discount, user_id=None, email=None):
    """Count one use of ``promo`` for ``order``.

    The increment is guarded in SQL so ``used_count`` can never pass
    ``max_uses`` even when two checkouts race for the last use.
    """
    claimed = guarded_update(
        PromoCode,
        [
            PromoCode.id == promo.id,
            or_(
                PromoCode.max_uses.is_(None),
                PromoCode.used_count < PromoCode.max_uses,
            ),
        ],
        {'used_count': PromoCode.used_count + 1},
    )
    if not claimed:
        raise InvalidPromoCode(
            'This promo code has reached its maximum number of uses')

    usage = PromoCodeUsage(
        promo_code_id=promo.id,
        user_id=user_id,
        email=str(email or '').strip().lower() or None,
        order_id=order.id,
        discount_applied=to_money(discount),
    )
    db.session.add(usage)
    db.session.flush()
    logger.info(
        "Promo code %s redeemed on order %s (discount=%s)",
        promo.code,
        order.id,
        discount,
    )
    return usage


def active_promo_codes(now=None):
    now = now or utcnow()
    return PromoCode.query.filter(
        PromoCode.is_active.is_(True),
        or_(PromoCode.start_date.is_(None), PromoCode.start_date <= now),
        or_(PromoCode.end_date.is_(None), PromoCode.end_date >= now),
        or_(
            PromoCode.max_uses.is_(None),
            PromoCode.used_count < PromoCode.max_uses,
        ),
    ).order_by(PromoCode.created_at.desc()).all()


def get_promo_code_or_404(promo_id):
    promo = db.session.get(PromoCode, promo_id)
    if promo is None:
        raise NotFound('Promo code not found')
    return promo


def _optional_count(value, field):
    if value in (None, ''):
        return None
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError(f'{field} must be a positive integer')
    return value


def save_promo_code(data, promo=None):
    """Create or partially update a promo code from request data."""
    creating = promo is None
    if creating:
        code = normalize_code(data.get('code'))
        if not code:
            raise ValidationError('code is required')
        if find_promo_code(code) is not None:
            raise Conflict('Promo code already exists', code=code)
        promo = PromoCode(code=code, used_count=0)
        db.session.add(promo)
    elif 'code' in data:
        code = normalize_code(data.get('code'))
        if not code:
            raise ValidationError('code cannot be empty')
        existing = find_promo_code(code)
        if existing is not None and existing.id != promo.id:
            raise Conflict('Promo code already exists', code=code)
        promo.code = code

    if creating or 'discount_type' in data:
        raw = str(data.get('discount_type') or '').strip()
        try:
            promo.discount_type = DiscountType[raw.upper()]
        except KeyError:
            raise ValidationError(f'Invalid discount type: {raw}')

    if creating or 'discount_value' in data:
        try:
            promo.discount_value = to_money(data.get('discount_value'))
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError('Invalid discount_value')
    if to_money(promo.discount_value) <= ZERO:
        raise ValidationError('discount_value must be greater than 0')
    if promo.discount_type == DiscountType.PERCENTAGE \
            and to_money(promo.discount_value) > HUNDRED:
        raise ValidationError('A percentage discount cannot exceed 100')

    if 'max_uses' in data:
        promo.max_uses = _optional_count(data['max_uses'], 'max_uses')
        if promo.max_uses is not None and promo.max_uses < promo.used_count:
            raise ValidationError(
                'max_uses cannot be lower than the current usage count',
                used_count=promo.used_count,
            )
    if 'max_uses_per_user' in data:
        promo.max_uses_per_user = _optional_count(
            data['max_uses_per_user'], 'max_uses_per_user')
    if 'is_active' in data:
        promo.is_active = bool(parse_bool(data['is_active'], default=True))
    if 'start_date' in data:
        promo.start_date = parse_datetime(data['start_date'], 'start_date')
    if 'end_date' in data:
        promo.end_date = parse_datetime(data['end_date'], 'end_date')
    if promo.start_date and promo.end_date \
            and promo.end_date < promo.start_date:
        raise ValidationError('end_date cannot be before start_date')
    if 'minimum_order_amount' in data:
        raw = data['minimum_order_amount']
        if raw in (None, ''):
            promo.minimum_order_amount = None
        else:
            try:
                minimum = to_money(raw)
            except (ArithmeticError, ValueError, TypeError):
                raise ValidationError('Invalid minimum_order_amount')
            if minimum < ZERO:
                raise ValidationError(
                    'minimum_order_amount cannot be negative')
            promo.minimum_order_amount = minimum

    db.session.flush()
    return promo


def delete_promo_code(promo):
    """Delete an unused code; used codes are only deactivated.

    Returns True when the row was deleted.
    """
    if promo.usages.count() > 0:
        promo.is_active = False
        db.session.flush()
        return False
    db.session.delete(promo)
    db.session.flush()
    return True
