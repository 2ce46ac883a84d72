from storefront.extensions import db
from storefront.errors import Conflict, NotFound, ValidationError
from storefront.models import (
    GameCode,
    OrderItem,
    Product,
    ProductEdition,
    ProductType,
)
from storefront.services.pricing import to_money, ZERO
from storefront.utils import parse_bool
from sqlalchemy import func, or_
from datetime import date
import re
import logging

logger = logging.getLogger(__name__)

SORT_OPTIONS = ('newest', 'price_asc', 'price_desc', 'name', 'release_date')

# Boolean query filters mapped to their columns
FLAG_FILTERS = {
    'featured': 'featured',
    'on_sale': 'is_on_sale',
    'new_release': 'is_new_release',
    'pre_order': 'is_pre_order',
    'credit': 'is_game_credit',
}

PRODUCT_FIELDS = (
    'name',
    'description',
    'platform',
    'image_url',
    'featured',
    'is_new_release',
    'is_on_sale',
    'is_pre_order',
    'is_game_credit',
    'release_date',
)
EDITION_FIELDS = ('name', 'description', 'image_url', 'bonus_content')


def _sanitize_query(query):
    if not query:
        return None
    q = str(query).replace('\x00', '').strip()
    if not q:
        return None
    q = re.sub(r'(--|/\*|\*/|;|["\'`\\#])', ' ', q)
    q = re.sub(r'\s+', ' ', q).strip()
    return q[:80]


def effective_price_column():
    return func.coalesce(Product.discounted_price, Product.price)


def catalog_query(filters=None, sort_by='newest'):
    """Non-deleted products narrowed by the storefront filters."""
    filters = filters or {}
    query = Product.query.filter_by(is_deleted=False)

    platform = (filters.get('platform') or '').strip()
    if platform:
        query = query.filter(func.lower(Product.platform) == platform.lower())

    product_type = (filters.get('type') or '').strip()
    if product_type:
        try:
            query = query.filter(
                Product.product_type == ProductType[product_type.upper()])
        except KeyError:
            raise ValidationError(f'Invalid product type: {product_type}')

    for arg, column in FLAG_FILTERS.items():
        flag = parse_bool(filters.get(arg))
        if flag is not None:
            query = query.filter(getattr(Product, column).is_(flag))

    query_safe = _sanitize_query(filters.get('q'))
    if query_safe:
        pattern = f'%{query_safe.lower()}%'
        query = query.filter(
            or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
            )
        )

    if sort_by == 'price_asc':
        query = query.order_by(effective_price_column().asc(), Product.id)
    elif sort_by == 'price_desc':
        query = query.order_by(effective_price_column().desc(), Product.id)
    elif sort_by == 'name':
        query = query.order_by(Product.name.asc())
    elif sort_by == 'release_date':
        query = query.order_by(
            Product.release_date.desc(), Product.created_at.desc())
    else:
        query = query.order_by(Product.created_at.desc(), Product.id.desc())
    return query


def get_product_or_404(product_id, include_deleted=False):
    product = db.session.get(Product, product_id)
    if product is None or (product.is_deleted and not include_deleted):
        raise NotFound('Product not found')
    return product


def get_edition_or_404(edition_id):
    edition = db.session.get(ProductEdition, edition_id)
    if edition is None or edition.product.is_deleted:
        raise NotFound('Edition not found')
    return edition


def _money_field(data, field, required=False):
    if field not in data or data[field] in (None, ''):
        if required:
            raise ValidationError(f'{field} is required')
        return None
    try:
        value = to_money(data[field])
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError(f'Invalid {field}')
    if value < ZERO:
        raise ValidationError(f'{field} cannot be negative')
    return value


def _stock_field(data):
    stock = data.get('stock', 0)
    if not isinstance(stock, int) or isinstance(stock, bool) or stock < 0:
        raise ValidationError('stock must be a non-negative integer')
    return stock


def _apply_prices(target, data, creating):
    price = _money_field(data, 'price', required=creating)
    if price is not None:
        target.price = price
    if 'discounted_price' in data:
        discounted = _money_field(data, 'discounted_price')
        if discounted is not None and discounted > to_money(target.price):
            raise ValidationError(
                'discounted_price cannot be higher than price')
        target.discounted_price = discounted


def _apply_fields(target, data, fields):
    for field in fields:
        if field not in data:
            continue
        value = data[field]
        column = type(target).__table__.columns[field]
        if isinstance(column.type, db.Boolean):
            value = bool(parse_bool(value, default=False))
        elif isinstance(column.type, db.Date):
            value = _parse_date(value)
        setattr(target, field, value)


def _parse_date(value):
    if value in (None, ''):
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f'Invalid date: {value}')


def save_product(data, product=None):
    creating = product is None
    if creating:
        if not str(data.get('name') or '').strip():
            raise ValidationError('name is required')
        if not str(data.get('platform') or '').strip():
            raise ValidationError('platform is required')
        product = Product(description='')
        db.session.add(product)

    _apply_fields(product, data, PRODUCT_FIELDS)
    _apply_prices(product, data, creating)
    if 'stock' in data or creating:
        product.stock = _stock_field(data)

    if 'product_type' in data or 'type' in data:
        raw = data.get('product_type') or data.get('type')
        try:
            product.product_type = ProductType[str(raw).upper()]
        except KeyError:
            raise ValidationError(f'Invalid product type: {raw}')
    if 'credit_value' in data:
        product.credit_value = _money_field(data, 'credit_value')
    if product.is_game_credit and product.credit_value is None:
        raise ValidationError('credit_value is required for game credits')

    db.session.flush()
    return product


def soft_delete_product(product, now):
    product.is_deleted = True
    product.deleted_at = now
    product.featured = False
    db.session.flush()


def sync_has_editions(product):
    product.has_editions = product.editions.count() > 0


def save_edition(product, data, edition=None):
    creating = edition is None
    if creating:
        if not str(data.get('name') or '').strip():
            raise ValidationError('name is required')
        edition = ProductEdition(product_id=product.id, description='')
        db.session.add(edition)

    _apply_fields(edition, data, EDITION_FIELDS)
    _apply_prices(edition, data, creating)
    if 'stock' in data or creating:
        edition.stock = _stock_field(data)

    db.session.flush()
    sync_has_editions(product)
    return edition


def delete_edition(edition):
    ordered = OrderItem.query.filter_by(edition_id=edition.id).first()
    stocked = GameCode.query.filter_by(edition_id=edition.id).first()
    if ordered is not None or stocked is not None:
        raise Conflict(
            'Edition has orders or game codes and cannot be deleted')
    product = edition.product
    db.session.delete(edition)
    db.session.flush()
    sync_has_editions(product)
