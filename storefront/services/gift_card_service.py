from flask import current_app
from storefront.extensions import db
from storefront.errors import Conflict, NotFound, ValidationError
from storefront.models import (
    GiftCard,
    GiftCardDenomination,
    Product,
    ProductType,
    WalletTransactionType,
    utcnow,
)
from storefront.services import wallet_service
from storefront.services.pricing import to_money, ZERO
from storefront.utils import guarded_update
import logging
import secrets

logger = logging.getLogger(__name__)

# No 0/O or 1/I, codes get typed in by hand
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_GROUPS = 3
CODE_GROUP_LENGTH = 4
MAX_CODE_ATTEMPTS = 20


def generate_code():
    groups = [
        ''.join(secrets.choice(CODE_ALPHABET)
                for _ in range(CODE_GROUP_LENGTH))
        for _ in range(CODE_GROUPS)
    ]
    return 'GC-' + '-'.join(groups)


def normalize_code(code):
    return str(code or '').strip().upper()


def _code_taken(code):
    return db.session.query(
        GiftCard.query.filter_by(code=code).exists()).scalar()


def unique_code(reserved=()):
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_code()
        if code not in reserved and not _code_taken(code):
            return code
    raise Conflict('Could not generate a unique gift card code')


def get_denomination_or_404(denomination_id):
    denomination = db.session.get(GiftCardDenomination, denomination_id)
    if denomination is None:
        raise NotFound('Denomination not found')
    return denomination


def get_gift_card_or_404(card_id):
    card = db.session.get(GiftCard, card_id)
    if card is None:
        raise NotFound('Gift card not found')
    return card


def get_platform_or_404(platform_id):
    product = db.session.get(Product, platform_id)
    if product is None or product.is_deleted \
            or product.product_type != ProductType.GIFT_CARD:
        raise NotFound('Gift card platform not found')
    return product


def _positive_money(value, label):
    try:
        amount = to_money(value)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f'Invalid {label}')
    if amount <= ZERO:
        raise ValidationError(f'{label} must be greater than 0')
    return amount


def _add_stock(denomination_id, count):
    criteria = [GiftCardDenomination.id == denomination_id]
    if count < 0:
        criteria.append(GiftCardDenomination.stock >= -count)
    return guarded_update(
        GiftCardDenomination,
        criteria,
        {'stock': GiftCardDenomination.stock + count},
    )


def create_gift_card(value=None, denomination=None, code=None,
                     expiry_date=None, notes=None, is_active=True):
    """One card, either of a denomination or with a free value."""
    if denomination is not None:
        amount = to_money(denomination.value)
        product_id = denomination.platform_id
    else:
        amount = _positive_money(value, 'value')
        product_id = None

    code = normalize_code(code) or unique_code()
    if _code_taken(code):
        raise Conflict('Gift card code already exists', code=code)

    card = GiftCard(
        code=code,
        value=amount,
        denomination_id=denomination.id if denomination is not None else None,
        product_id=product_id,
        is_active=is_active,
        expiry_date=expiry_date,
        notes=notes,
    )
    db.session.add(card)
    if denomination is not None:
        _add_stock(denomination.id, 1)
    db.session.flush()
    return card


def create_batch(denomination, count, expiry_date=None, notes=None):
    """Issue ``count`` cards of ``denomination`` with fresh codes."""
    limit = current_app.config['GIFT_CARD_BATCH_MAX']
    if not isinstance(count, int) or isinstance(count, bool) \
            or not 1 <= count <= limit:
        raise ValidationError(f'count must be between 1 and {limit}')
    if not denomination.active:
        raise ValidationError('Denomination is not active')

    reserved = set()
    cards = []
    for _ in range(count):
        code = unique_code(reserved)
        reserved.add(code)
        cards.append(GiftCard(
            code=code,
            value=to_money(denomination.value),
            denomination_id=denomination.id,
            product_id=denomination.platform_id,
            expiry_date=expiry_date,
            notes=notes,
        ))
    db.session.add_all(cards)
    _add_stock(denomination.id, count)
    db.session.flush()
    logger.info(
        "Issued %d gift cards of denomination %s", count, denomination.id)
    return cards


def delete_gift_card(card):
    if card.is_redeemed:
        raise ValidationError('Redeemed gift cards cannot be deleted')
    if card.denomination_id is not None:
        _add_stock(card.denomination_id, -1)
    db.session.delete(card)
    db.session.flush()

def redeem(code, user, now=None):
    """Credit the card value to ``user``'s wallet.

    Returns ``(card, wallet_transaction)``.
    """
    now = now or utcnow()
    code = normalize_code(code)
    if not code:
        raise ValidationError('Gift card code is required')

    card = GiftCard.query.filter_by(code=code).first()
    if card is None:
        raise NotFound('Gift card not found')
    if not card.is_active:
        raise ValidationError('This gift card is not active')
    if card.is_redeemed:
        raise ValidationError('This gift card has already been redeemed')
    if card.expiry_date is not None and card.expiry_date < now:
        raise ValidationError('This gift card has expired')

    flipped = guarded_update(
        GiftCard,
        [GiftCard.id == card.id, GiftCard.is_redeemed.is_(False)],
        {
            'is_redeemed': True,
            'redeemed_at': now,
            'redeemed_by_user_id': user.id,
        },
    )
    if not flipped:
        raise Conflict('This gift card has already been redeemed')

    transaction = wallet_service.apply_wallet_change(
        user.id,
        card.value,
        WalletTransactionType.GIFT_CARD,
        f'Gift card {card.code} redeemed',
    )

    if card.denomination_id is not None:
        _add_stock(card.denomination_id, -1)

    db.session.flush()
    logger.info("Gift card %s redeemed by user %s", card.id, user.id)
    return card, transaction
