from flask import Blueprint, request, jsonify
from flask_login import login_required, current_user
from storefront.extensions import db
from storefront.models import GameCode, Permission, ProductType, utcnow
from storefront.middleware import permission_required
from storefront.serializers import (
    edition_payload,
    game_code_payload,
    product_payload,
)
from storefront.services import catalog_service
from storefront.services.audit_service import log_audit
from storefront.utils import (
    get_json_body,
    paginate_query,
    pagination_args,
    parse_bool,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('products', __name__)

MAX_CODES_PER_REQUEST = 500


def _product_listing(filters, sort_by=None):
    page, per_page = pagination_args()
    sort_by = sort_by or request.args.get('sort', 'newest')
    if sort_by not in catalog_service.SORT_OPTIONS:
        return jsonify({'error': f'Invalid sort option: {sort_by}'}), 400

    query = catalog_service.catalog_query(filters, sort_by)
    result = paginate_query(query, page, per_page)
    result['items'] = [product_payload(p) for p in result['items']]
    return jsonify(result)


def _audit(action, target_id, payload=None, target_type='PRODUCT'):
    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value.upper(),
        action=action,
        target_type=target_type,
        target_id=target_id,
        payload=payload
    )


@bp.route('/api/products', methods=['GET'])
def list_products():
    return _product_listing(request.args.to_dict())


@bp.route('/api/products/featured', methods=['GET'])
def featured_products():
    return _product_listing({'featured': True})


@bp.route('/api/products/new-releases', methods=['GET'])
def new_releases():
    return _product_listing({'new_release': True}, sort_by='release_date')


@bp.route('/api/products/on-sale', methods=['GET'])
def on_sale_products():
    return _product_listing({'on_sale': True})


@bp.route('/api/products/pre-orders', methods=['GET'])
def pre_order_products():
    return _product_listing({'pre_order': True}, sort_by='release_date')


@bp.route('/api/products/gift-cards', methods=['GET'])
def gift_card_products():
    return _product_listing({'type': ProductType.GIFT_CARD.value})


@bp.route('/api/products/credits/all', methods=['GET'])
def game_credit_products():
    return _product_listing({'credit': True}, sort_by='price_asc')


@bp.route('/api/products/platform/<platform>', methods=['GET'])
def products_by_platform(platform):
    filters = request.args.to_dict()
    filters['platform'] = platform
    return _product_listing(filters)


@bp.route('/api/products/<int:product_id>', methods=['GET'])
def get_product(product_id):
    product = catalog_service.get_product_or_404(product_id)
    return jsonify(product_payload(product, include_editions=True))


@bp.route('/api/products', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_PRODUCTS)
def create_product():
    data = get_json_body()
    product = catalog_service.save_product(data)
    db.session.commit()

    _audit('PRODUCT_CREATE', product.id, {'name': product.name})
    return jsonify(product_payload(product, include_editions=True)), 201


@bp.route('/api/products/<int:product_id>', methods=['PUT', 'PATCH'])
@login_required
@permission_required(Permission.MANAGE_PRODUCTS)
def update_product(product_id):
    product = catalog_service.get_product_or_404(product_id)
    data = get_json_body()
    catalog_service.save_product(data, product)
    db.session.commit()

    _audit('PRODUCT_UPDATE', product.id, {'fields': sorted(data.keys())})
    return jsonify(product_payload(product, include_editions=True))


@bp.route('/api/products/<int:product_id>', methods=['DELETE'])
@login_required
@permission_required(Permission.DELETE_PRODUCTS)
def delete_product(product_id):
    product = catalog_service.get_product_or_404(product_id)
    catalog_service.soft_delete_product(product, utcnow())
    db.session.commit()

    _audit('PRODUCT_DELETE', product.id, {'name': product.name})
    return jsonify({'ok': True, 'id': product.id})


# Editions


@bp.route('/api/products/<int:product_id>/editions', methods=['GET'])
def list_editions(product_id):
    product = catalog_service.get_product_or_404(product_id)
    return jsonify({
        'items': product_payload(product, include_editions=True)['editions'],
    })


@bp.route('/api/products/<int:product_id>/editions', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_PRODUCTS)
def create_edition(product_id):
    product = catalog_service.get_product_or_404(product_id)
    edition = catalog_service.save_edition(product, get_json_body())
    db.session.commit()

    _audit('EDITION_CREATE', edition.id, {'product_id': product.id},
           target_type='EDITION')
    return jsonify(edition_payload(edition)), 201


@bp.route('/api/products/editions/<int:edition_id>', methods=['PUT', 'PATCH'])
@login_required
@permission_required(Permission.MANAGE_PRODUCTS)
def update_edition(edition_id):
    edition = catalog_service.get_edition_or_404(edition_id)
    data = get_json_body()
    catalog_service.save_edition(edition.product, data, edition)
    db.session.commit()

    _audit('EDITION_UPDATE', edition.id, {'fields': sorted(data.keys())},
           target_type='EDITION')
    return jsonify(edition_payload(edition))


@bp.route('/api/products/editions/<int:edition_id>', methods=['DELETE'])
@login_required
@permission_required(Permission.MANAGE_PRODUCTS)
def delete_edition(edition_id):
    edition = catalog_service.get_edition_or_404(edition_id)
    product_id = edition.product_id
    catalog_service.delete_edition(edition)
    db.session.commit()

    _audit('EDITION_DELETE', edition_id, {'product_id': product_id},
           target_type='EDITION')
    return jsonify({'ok': True, 'id': edition_id})


# Game code inventory


@bp.route('/api/products/<int:product_id>/game-codes', methods=['GET'])
@login_required
@permission_required(Permission.MANAGE_GAME_CODES)
def list_product_game_codes(product_id):
    product = catalog_service.get_product_or_404(product_id)
    page, per_page = pagination_args()

    query = GameCode.query.filter_by(product_id=product.id)
    used = parse_bool(request.args.get('used'))
    if used is not None:
        query = query.filter(GameCode.is_used.is_(used))
    edition_id = request.args.get('edition_id', type=int)
    if edition_id is not None:
        query = query.filter_by(edition_id=edition_id)

    result = paginate_query(query.order_by(GameCode.id), page, per_page)
    result['items'] = [game_code_payload(c) for c in result['items']]
    result['unused_count'] = GameCode.query.filter_by(
        product_id=product.id, is_used=False).count()
    return jsonify(result)


@bp.route('/api/game-codes', methods=['POST'])
@login_required
@permission_required(Permission.MANAGE_GAME_CODES)
def add_game_codes():
    """Stock unassigned codes: ``{product_id, edition_id?, codes: [...]}``."""
    data = get_json_body()
    product_id = data.get('product_id')
    if not isinstance(product_id, int):
        return jsonify({'error': 'product_id is required'}), 400
    product = catalog_service.get_product_or_404(product_id)

    edition_id = data.get('edition_id')
    if edition_id is not None:
        edition = catalog_service.get_edition_or_404(edition_id)
        if edition.product_id != product.id:
            return jsonify({
                'error': 'Edition does not belong to this product'
            }), 400

    codes = data.get('codes')
    if codes is None and data.get('code'):
        codes = [data['code']]
    if not isinstance(codes, list):
        return jsonify({'error': 'codes must be a list'}), 400
    codes = [str(c).strip() for c in codes if str(c or '').strip()]
    if not codes:
        return jsonify({'error': 'At least one code is required'}), 400
    if len(codes) > MAX_CODES_PER_REQUEST:
        return jsonify({
            'error': f'At most {MAX_CODES_PER_REQUEST} codes per request'
        }), 400

    created = []
    for value in codes:
        game_code = GameCode(
            product_id=product.id,
            edition_id=edition_id,
            code=value,
            platform=data.get('platform') or product.platform,
            product_type=product.product_type,
        )
        db.session.add(game_code)
        created.append(game_code)
    db.session.commit()

    _audit('GAME_CODES_ADD', product.id, {
        'count': len(created),
        'edition_id': edition_id,
    })
    return jsonify({
        'created': len(created),
        'items': [game_code_payload(c) for c in created],
    }), 201
