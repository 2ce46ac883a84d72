from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.errors import ValidationError
from storefront.models import (
    GiftCard,
    GiftCardDenomination,
    Permission,
    Product,
    ProductType,
)
from storefront.middleware import permission_required
from storefront.serializers import (
    denomination_payload,
    gift_card_payload,
    wallet_transaction_payload,
)
from storefront.services import gift_card_service
from storefront.services.audit_service import log_audit
from storefront.services.pricing import to_money, ZERO
from storefront.utils import (
    get_json_body,
    money,
    paginate_query,
    pagination_args,
    parse_bool,
    parse_datetime,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('gift_cards', __name__)


def _audit(action, target_type, target_id, payload=None):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload
    )


def _denomination_value(data):
    try:
        value = to_money(data.get('value'))
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError('Invalid value')
    if value <= ZERO:
        raise ValidationError('value must be greater than 0')
    return value


def _stock_value(raw):
    if not isinstance(raw, int) or isinstance(raw, bool) or raw < 0:
        raise ValidationError('stock must be a non-negative integer')
    return raw


# Platforms and denominations


@bp.route('/api/platforms', methods=['GET'])
def list_platforms():
    """Gift-card products that denominations hang off."""
    platforms = Product.query.filter_by(
        product_type=ProductType.GIFT_CARD,
        is_deleted=False,
    ).order_by(Product.name).all()
    return jsonify({
        'items': [
            {
                'id': p.id,
                'name': p.name,
                'platform': p.platform,
                'image_url': p.image_url,
                'denomination_count': GiftCardDenomination.query.filter_by(
                    platform_id=p.id, active=True).count(),
            }
            for p in platforms
        ]
    })


@bp.route('/api/gift-card-denominations', methods=['GET'])
def list_denominations():
    query = GiftCardDenomination.query
    # Anonymous shoppers only see what can be bought
    include_inactive = parse_bool(request.args.get('include_inactive'), False)
    if not (include_inactive and current_user.is_authenticated
            and current_user.has_permission(Permission.MANAGE_GIFT_CARDS)):
        query = query.filter(GiftCardDenomination.active.is_(True))
    denominations = query.order_by(
        GiftCardDenomination.platform_id, GiftCardDenomination.value).all()
    return jsonify({'items': [denomination_payload(d) for d in denominations]})


@bp.route('/api/gift-card-denominations/platform/<int:platform_id>',
          methods=['GET'])
def denominations_by_platform(platform_id):
    gift_card_service.get_platform_or_404(platform_id)
    denominations = GiftCardDenomination.query.filter_by(
        platform_id=platform_id, active=True,
    ).order_by(GiftCardDenomination.value).all()
    return jsonify({'items': [denomination_payload(d) for d in denominations]})


@bp.route('/api/gift-card-denominations/<int:denomination_id>',
          methods=['GET'])
def get_denomination(denomination_id):
    denomination = gift_card_service.get_denomination_or_404(denomination_id)
    return jsonify(denomination_payload(denomination))


@bp.route('/api/gift-card-denominations', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def create_denomination():
    data = get_json_body()
    platform_id = data.get('platform_id')
    if not isinstance(platform_id, int):
        return jsonify({'error': 'platform_id is required'}), 400
    gift_card_service.get_platform_or_404(platform_id)

    name = str(data.get('name') or '').strip()
    value = _denomination_value(data)
    denomination = GiftCardDenomination(
        platform_id=platform_id,
        name=name or f'{money(value):g}',
        value=value,
        stock=_stock_value(data.get('stock', 0)),
        active=bool(parse_bool(data.get('active'), default=True)),
    )
    db.session.add(denomination)
    db.session.commit()

    _audit('DENOMINATION_CREATE', 'GIFT_CARD_DENOMINATION', denomination.id,
           {'platform_id': platform_id, 'value': value})
    return jsonify(denomination_payload(denomination)), 201


@bp.route('/api/gift-card-denominations/<int:denomination_id>',
          methods=['PUT', 'PATCH'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def update_denomination(denomination_id):
    denomination = gift_card_service.get_denomination_or_404(denomination_id)
    data = get_json_body()

    if 'name' in data:
        name = str(data.get('name') or '').strip()
        if not name:
            return jsonify({'error': 'name cannot be empty'}), 400
        denomination.name = name
    if 'value' in data:
        denomination.value = _denomination_value(data)
    if 'stock' in data:
        denomination.stock = _stock_value(data['stock'])
    if 'active' in data:
        # Form posts send "true"/"false" strings
        denomination.active = bool(parse_bool(data['active'], default=False))
    if 'platform_id' in data:
        gift_card_service.get_platform_or_404(data['platform_id'])
        denomination.platform_id = data['platform_id']
    db.session.commit()

    _audit('DENOMINATION_UPDATE', 'GIFT_CARD_DENOMINATION', denomination.id,
           {'fields': sorted(data.keys())})
    return jsonify(denomination_payload(denomination))


@bp.route('/api/gift-card-denominations/<int:denomination_id>/stock',
          methods=['PATCH'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def update_denomination_stock(denomination_id):
    denomination = gift_card_service.get_denomination_or_404(denomination_id)
    data = get_json_body()
    if 'stock' not in data:
        return jsonify({'error': 'stock is required'}), 400
    old_stock = denomination.stock
    denomination.stock = _stock_value(data['stock'])
    db.session.commit()

    _audit('DENOMINATION_STOCK_UPDATE', 'GIFT_CARD_DENOMINATION',
           denomination.id, {'from': old_stock, 'to': denomination.stock})
    return jsonify(denomination_payload(denomination))


@bp.route('/api/gift-card-denominations/<int:denomination_id>',
          methods=['DELETE'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def delete_denomination(denomination_id):
    denomination = gift_card_service.get_denomination_or_404(denomination_id)
    if denomination.gift_cards.count() > 0:
        denomination.active = False
        deleted = False
    else:
        db.session.delete(denomination)
        deleted = True
    db.session.commit()

    _audit('DENOMINATION_DELETE', 'GIFT_CARD_DENOMINATION', denomination_id,
           {'deleted': deleted})
    return jsonify({'ok': True, 'deleted': deleted})


# Gift cards


@bp.route('/api/gift-cards', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def list_gift_cards():
    page, per_page = pagination_args()
    query = GiftCard.query
    redeemed = parse_bool(request.args.get('redeemed'))
    if redeemed is not None:
        query = query.filter(GiftCard.is_redeemed.is_(redeemed))
    denomination_id = request.args.get('denomination_id', type=int)
    if denomination_id is not None:
        query = query.filter_by(denomination_id=denomination_id)
    result = paginate_query(
        query.order_by(GiftCard.created_at.desc(), GiftCard.id.desc()),
        page,
        per_page)
    result['items'] = [gift_card_payload(c) for c in result['items']]
    return jsonify(result)


@bp.route('/api/gift-cards/<int:card_id>', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def get_gift_card(card_id):
    card = gift_card_service.get_gift_card_or_404(card_id)
    return jsonify(gift_card_payload(card))


@bp.route('/api/gift-cards', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def create_gift_card():
    data = get_json_body()
    denomination = None
    if data.get('denomination_id') is not None:
        denomination = gift_card_service.get_denomination_or_404(
            data['denomination_id'])

    card = gift_card_service.create_gift_card(
        value=data.get('value'),
        denomination=denomination,
        code=data.get('code'),
        expiry_date=parse_datetime(data.get('expiry_date'), 'expiry_date'),
        notes=data.get('notes'),
        is_active=bool(parse_bool(data.get('is_active'), default=True)),
    )
    db.session.commit()

    _audit('GIFT_CARD_CREATE', 'GIFT_CARD', card.id, {'value': card.value})
    return jsonify(gift_card_payload(card)), 201


@bp.route('/api/gift-cards/batch', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def create_gift_card_batch():
    data = get_json_body()
    if data.get('denomination_id') is None:
        return jsonify({'error': 'denomination_id is required'}), 400
    denomination = gift_card_service.get_denomination_or_404(
        data['denomination_id'])

    cards = gift_card_service.create_batch(
        denomination,
        data.get('count'),
        expiry_date=parse_datetime(data.get('expiry_date'), 'expiry_date'),
        notes=data.get('notes'),
    )
    db.session.commit()

    _audit('GIFT_CARD_BATCH_CREATE', 'GIFT_CARD_DENOMINATION',
           denomination.id, {'count': len(cards)})
    return jsonify({
        'created': len(cards),
        'items': [gift_card_payload(c) for c in cards],
        'denomination': denomination_payload(denomination),
    }), 201


@bp.route('/api/gift-cards/<int:card_id>', methods=['PUT', 'PATCH'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def update_gift_card(card_id):
    card = gift_card_service.get_gift_card_or_404(card_id)
    data = get_json_body()
    if card.is_redeemed:
        return jsonify({'error': 'Redeemed gift cards cannot be edited'}), 400

    if 'is_active' in data:
        card.is_active = bool(parse_bool(data['is_active'], default=False))
    if 'expiry_date' in data:
        card.expiry_date = parse_datetime(data['expiry_date'], 'expiry_date')
    if 'notes' in data:
        card.notes = data['notes']
    db.session.commit()

    _audit('GIFT_CARD_UPDATE', 'GIFT_CARD', card.id,
           {'fields': sorted(data.keys())})
    return jsonify(gift_card_payload(card))


@bp.route('/api/gift-cards/<int:card_id>', methods=['DELETE'])
@login_required
@permission_required(Permission.MANAGE_GIFT_CARDS)
def delete_gift_card(card_id):
    card = gift_card_service.get_gift_card_or_404(card_id)
    gift_card_service.delete_gift_card(card)
    db.session.commit()

    _audit('GIFT_CARD_DELETE', 'GIFT_CARD', card_id)
    return jsonify({'ok': True, 'id': card_id})


@bp.route('/api/gift-cards/redeem', methods=['POST'])
@login_required
def redeem_gift_card():
    data = get_json_body()
    card, transaction = gift_card_service.redeem(data.get('code'), current_user)
    db.session.commit()

    _audit('GIFT_CARD_REDEEM', 'GIFT_CARD', card.id, {
        'value': card.value,
        'balance_after': transaction.balance_after,
    })
    return jsonify({
        'ok': True,
        'amount': money(card.value),
        'balance': money(transaction.balance_after),
        'transaction': wallet_transaction_payload(transaction),
    })
