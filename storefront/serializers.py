"""JSON payloads shared by the blueprints."""
from storefront.models import ProductEdition
from storefront.utils import iso, money


def user_payload(user, include_wallet=True):
    data = {
        'id': user.id,
        'email': user.email,
        'username': user.username,
        'role': user.role.value,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'phone_number': user.phone_number,
        'city': user.city,
        'is_active': user.is_active,
        'created_at': iso(user.created_at),
        'last_login_at': iso(user.last_login_at),
    }
    if include_wallet:
        data['wallet_balance'] = money(user.wallet_balance)
    return data


def edition_payload(edition):
    return {
        'id': edition.id,
        'product_id': edition.product_id,
        'name': edition.name,
        'description': edition.description,
        'price': money(edition.price),
        'discounted_price': money(edition.discounted_price),
        'unit_price': money(edition.unit_price),
        'image_url': edition.image_url,
        'stock': edition.stock,
        'bonus_content': edition.bonus_content,
    }


def product_payload(product, include_editions=False):
    data = {
        'id': product.id,
        'name': product.name,
        'description': product.description,
        'price': money(product.price),
        'discounted_price': money(product.discounted_price),
        'unit_price': money(product.unit_price),
        'platform': product.platform,
        'image_url': product.image_url,
        'stock': product.stock,
        'in_stock': product.is_pre_order or product.stock > 0,
        'featured': product.featured,
        'is_new_release': product.is_new_release,
        'is_on_sale': product.is_on_sale,
        'is_pre_order': product.is_pre_order,
        'has_editions': product.has_editions,
        'product_type': product.product_type.value,
        'is_game_credit': product.is_game_credit,
        'credit_value': money(product.credit_value),
        'release_date': iso(product.release_date),
        'created_at': iso(product.created_at),
    }
    if include_editions:
        editions = product.editions.order_by(ProductEdition.id)
        data['editions'] = [edition_payload(e) for e in editions]
    return data


def order_item_payload(item):
    return {
        'id': item.id,
        'product_id': item.product_id,
        'edition_id': item.edition_id,
        'product_name': item.product_name,
        'platform': item.platform,
        'unit_price': money(item.unit_price),
        'quantity': item.quantity,
        'line_total': money(item.line_total),
    }


def order_payload(order, include_items=True):
    data = {
        'id': order.id,
        'order_number': order.order_number,
        'user_id': order.user_id,
        'status': order.status.value,
        'payment_status': order.payment_status.value,
        'payment_method': order.payment_method.value,
        'email': order.email,
        'first_name': order.first_name,
        'last_name': order.last_name,
        'phone_number': order.phone_number,
        'city': order.city,
        'subtotal_before_discount': money(order.subtotal_before_discount),
        'promo_code': order.promo_code,
        'promo_discount': money(order.promo_discount),
        'wallet_amount_used': money(order.wallet_amount_used),
        'cod_fee': money(order.cod_fee),
        'total_amount': money(order.total_amount),
        'payment_deadline': iso(order.payment_deadline),
        'cancelled_reason': order.cancelled_reason,
        'cancelled_at': iso(order.cancelled_at),
        'paid_at': iso(order.paid_at),
        'delivered_at': iso(order.delivered_at),
        'cashback_amount': money(order.cashback_amount),
        'created_at': iso(order.created_at),
        'updated_at': iso(order.updated_at),
    }
    if include_items:
        data['items'] = [order_item_payload(i) for i in order.items]
    return data


def game_code_payload(code, reveal=True):
    return {
        'id': code.id,
        'product_id': code.product_id,
        'edition_id': code.edition_id,
        'code': code.code if reveal else None,
        'platform': code.platform,
        'product_type': code.product_type.value,
        'is_used': code.is_used,
        'order_id': code.order_id,
        'assigned_at': iso(code.assigned_at),
        'created_at': iso(code.created_at),
    }


def wallet_transaction_payload(tx):
    return {
        'id': tx.id,
        'user_id': tx.user_id,
        'amount': money(tx.amount),
        'balance_after': money(tx.balance_after),
        'type': tx.type.value,
        'description': tx.description,
        'status': tx.status,
        'order_id': tx.order_id,
        'created_at': iso(tx.created_at),
    }


def promo_code_payload(promo):
    return {
        'id': promo.id,
        'code': promo.code,
        'discount_type': promo.discount_type.value,
        'discount_value': money(promo.discount_value),
        'max_uses': promo.max_uses,
        'max_uses_per_user': promo.max_uses_per_user,
        'used_count': promo.used_count,
        'is_active': promo.is_active,
        'start_date': iso(promo.start_date),
        'end_date': iso(promo.end_date),
        'minimum_order_amount': money(promo.minimum_order_amount),
        'created_at': iso(promo.created_at),
    }


def denomination_payload(denomination):
    return {
        'id': denomination.id,
        'platform_id': denomination.platform_id,
        'platform_name': (
            denomination.platform.name if denomination.platform else None),
        'name': denomination.name,
        'value': money(denomination.value),
        'stock': denomination.stock,
        'active': denomination.active,
        'created_at': iso(denomination.created_at),
    }


def gift_card_payload(card):
    return {
        'id': card.id,
        'code': card.code,
        'value': money(card.value),
        'denomination_id': card.denomination_id,
        'product_id': card.product_id,
        'is_active': card.is_active,
        'is_redeemed': card.is_redeemed,
        'expiry_date': iso(card.expiry_date),
        'notes': card.notes,
        'redeemed_at': iso(card.redeemed_at),
        'redeemed_by_user_id': card.redeemed_by_user_id,
        'created_at': iso(card.created_at),
    }
