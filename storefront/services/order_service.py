"""Order intake and the order/payment lifecycle.

States::

    pending --> paid --> delivered
       |         |
       +---------+--> cancelled --(restore)--> pending, or paid when the
                                                wallet covers the order

Cash-on-delivery orders may also go straight from pending to delivered, the
payment being collected on delivery. Unpaid bank transfers are cancelled
lazily once their deadline has passed (:func:`expire_if_overdue`), whenever
an order is read, or in bulk by :func:`expire_overdue_orders`.

Functions here never commit: the calling view commits once, so an error at
any step leaves no partial order behind.
"""
from collections import namedtuple
from datetime import timedelta
from flask import current_app
from storefront.extensions import db
from storefront.errors import (
    Forbidden,
    InsufficientBalance,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from storefront.models import (
    GameCode,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
    ProductEdition,
    utcnow,
)
from storefront.services import promo_service, settings_service, wallet_service
from storefront.services.pricing import compute_order_totals, to_money, ZERO
from storefront.utils import guarded_update
import logging

logger = logging.getLogger(__name__)

AUTO_CANCEL_REASON = 'Payment deadline expired'
REQUIRED_CONTACT_FIELDS = ('email', 'first_name', 'last_name', 'phone_number')
MAX_LINE_QUANTITY = 100

LineRequest = namedtuple(
    'LineRequest', ['product', 'edition', 'quantity', 'unit_price'])


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

def parse_enum(enum_cls, value, label):
    if isinstance(value, enum_cls):
        return value
    raw = str(value or '').strip()
    if not raw:
        raise ValidationError(f'{label} is required')
    try:
        return enum_cls[raw.upper()]
    except KeyError:
        allowed = ', '.join(member.value for member in enum_cls)
        raise ValidationError(
            f'Invalid {label}: {raw}. Allowed values: {allowed}')


def parse_order_reference(reference):
    """Order id from ``42``, ``"42"``, ``"SD000042"`` or ``"SO-000042"``."""
    if isinstance(reference, int) and not isinstance(reference, bool):
        return reference
    ref = str(reference or '').strip().upper()
    for prefix in ('SD', 'SO-', 'SO'):
        if ref.startswith(prefix):
            ref = ref[len(prefix):]
            break
    if not ref.isdigit():
        return None
    return int(ref)


def get_order_or_404(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound('Order not found')
    return order


def find_order_by_reference(reference):
    order_id = parse_order_reference(reference)
    if order_id is None:
        return None
    return db.session.get(Order, order_id)


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

def _take_stock(product, edition, quantity):
    if product.is_pre_order:
        return
    model = ProductEdition if edition is not None else Product
    target = edition if edition is not None else product
    taken = guarded_update(
        model,
        [model.id == target.id, model.stock >= quantity],
        {'stock': model.stock - quantity},
    )
    if not taken:
        raise InsufficientStock(
            f'Product {product.name} has insufficient stock',
            product_id=product.id,
        )


def _return_stock(order):
    for item in order.items:
        product = item.product
        if product is None or product.is_pre_order:
            continue
        model = ProductEdition if item.edition_id else Product
        target_id = item.edition_id or item.product_id
        guarded_update(
            model,
            [model.id == target_id],
            {'stock': model.stock + item.quantity},
        )


def _retake_stock(order):
    for item in order.items:
        _take_stock(item.product, item.edition, item.quantity)


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

def _resolve_lines(raw_items):
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError('Cart is empty')

    lines = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError('Invalid cart item')
        product_id = raw.get('product_id')
        edition_id = raw.get('edition_id')
        quantity = raw.get('quantity', 1)

        if not isinstance(quantity, int) or isinstance(quantity, bool) \
                or quantity <= 0:
            raise ValidationError('Quantity must be a positive integer')
        if quantity > MAX_LINE_QUANTITY:
            raise ValidationError(
                f'Quantity cannot exceed {MAX_LINE_QUANTITY} per item')

        product = None
        if isinstance(product_id, int) and not isinstance(product_id, bool):
            product = db.session.get(Product, product_id)
        if product is None or product.is_deleted:
            raise NotFound(f'Product {product_id} not found')

        edition = None
        if edition_id is not None:
            edition = db.session.get(ProductEdition, edition_id) \
                if isinstance(edition_id, int) else None
            if edition is None or edition.product_id != product.id:
                raise ValidationError(
                    f'Edition {edition_id} does not belong to product '
                    f'{product.name}')

        available = edition.stock if edition is not None else product.stock
        if not product.is_pre_order and available < quantity:
            raise InsufficientStock(
                f'Product {product.name} has insufficient stock',
                product_id=product.id,
            )

        unit_price = to_money(
            edition.unit_price if edition is not None else product.unit_price)
        lines.append(LineRequest(product, edition, quantity, unit_price))
    return lines


def _clean_contact(data, user):
    contact = {}
    for field in REQUIRED_CONTACT_FIELDS + ('city',):
        value = data.get(field)
        if value in (None, '') and user is not None:
            value = getattr(user, field, None)
        contact[field] = str(value).strip() if value is not None else ''

    for field in REQUIRED_CONTACT_FIELDS:
        if not contact[field]:
            raise ValidationError(f'{field} cannot be empty')
    if '@' not in contact['email']:
        raise ValidationError('Invalid email address')
    contact['city'] = contact['city'] or None
    return contact


def _requested_wallet_amount(data):
    raw = data.get('wallet_amount')
    if raw in (None, '', 0):
        return ZERO
    if isinstance(raw, bool):
        raise ValidationError('Invalid wallet amount')
    try:
        amount = to_money(raw)
    except (ArithmeticError, ValueError, TypeError):
        raise ValidationError('Invalid wallet amount')
    if amount < ZERO:
        raise ValidationError('Wallet amount cannot be negative')
    return amount


def create_order(data, user=None, now=None):
    """Validate a checkout request and write the order atomically.

    ``data`` carries ``items``, contact fields, ``payment_method`` and the
    optional ``promo_code`` / ``wallet_amount``. ``user`` is None for guest
    checkouts.
    """
    now = now or utcnow()
    payment_method = parse_enum(
        PaymentMethod, data.get('payment_method'), 'payment method')
    contact = _clean_contact(data, user)
    lines = _resolve_lines(data.get('items'))

    fee = ZERO
    if payment_method == PaymentMethod.CASH_ON_DELIVERY:
        fee = settings_service.cod_fee()
        if fee is None:
            raise ValidationError('Cash on delivery is not available')
        if not contact['city']:
            raise ValidationError('city is required for cash on delivery')

    subtotal = sum(
        (line.unit_price * line.quantity for line in lines), ZERO)

    user_id = user.id if user is not None else None
    promo = None
    discount = ZERO
    promo_input = str(data.get('promo_code') or '').strip()
    if promo_input:
        promo, discount = promo_service.validate_promo_code(
            promo_input,
            subtotal,
            user_id=user_id,
            email=contact['email'],
            now=now,
            lock=True,
        )

    after_promo = to_money(subtotal) - discount
    requested_wallet = _requested_wallet_amount(data)
    if payment_method == PaymentMethod.WALLET:
        wallet_amount = after_promo
    else:
        wallet_amount = requested_wallet

    if wallet_amount > ZERO:
        if user is None:
            raise ValidationError('You must be logged in to use your wallet')
        if wallet_amount > after_promo:
            raise ValidationError(
                'Wallet amount exceeds the amount due',
                amount_due=float(after_promo),
            )
        balance = wallet_service.current_balance(user.id)
        if wallet_amount > balance:
            raise InsufficientBalance(
                'Insufficient wallet balance',
                balance=float(balance),
                required=float(wallet_amount),
            )
    elif payment_method == PaymentMethod.WALLET and user is None:
        raise ValidationError('You must be logged in to use your wallet')

    totals = compute_order_totals(subtotal, discount, wallet_amount, fee)

    paid_now = (
        payment_method == PaymentMethod.WALLET
        or (payment_method != PaymentMethod.CASH_ON_DELIVERY
            and totals.total == ZERO)
    )

    order = Order(
        user_id=user_id,
        status=OrderStatus.PAID if paid_now else OrderStatus.PENDING,
        payment_status=(
            PaymentStatus.COMPLETED if paid_now else PaymentStatus.PENDING),
        payment_method=payment_method,
        email=contact['email'],
        first_name=contact['first_name'],
        last_name=contact['last_name'],
        phone_number=contact['phone_number'],
        city=contact['city'],
        subtotal_before_discount=totals.subtotal,
        promo_code=promo.code if promo is not None else None,
        promo_discount=totals.promo_discount,
        wallet_amount_used=totals.wallet_amount,
        cod_fee=totals.cod_fee,
        total_amount=totals.total,
        paid_at=now if paid_now else None,
        created_at=now,
        updated_at=now,
    )
    if payment_method == PaymentMethod.BANK_TRANSFER and not paid_now:
        order.payment_deadline = now + timedelta(
            days=current_app.config['PAYMENT_DEADLINE_DAYS'])
    db.session.add(order)
    db.session.flush()

    for line in lines:
        db.session.add(OrderItem(
            order_id=order.id,
            product_id=line.product.id,
            edition_id=line.edition.id if line.edition is not None else None,
            product_name=(
                f'{line.product.name} - {line.edition.name}'
                if line.edition is not None else line.product.name),
            platform=line.product.platform,
            unit_price=line.unit_price,
            quantity=line.quantity,
        ))
        _take_stock(line.product, line.edition, line.quantity)

    if promo is not None:
        promo_service.redeem_promo_code(
            promo, order, discount, user_id=user_id, email=contact['email'])

    if totals.wallet_amount > ZERO:
        wallet_service.debit_for_order(order, totals.wallet_amount)

    db.session.flush()
    logger.info(
        "Order %s created: method=%s subtotal=%s promo=%s wallet=%s "
        "fee=%s total=%s status=%s",
        order.id,
        payment_method.value,
        totals.subtotal,
        totals.promo_discount,
        totals.wallet_amount,
        totals.cod_fee,
        totals.total,
        order.status.value,
    )
    return order


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def is_payment_expired(order, now=None):
    now = now or utcnow()
    return (
        order.payment_method == PaymentMethod.BANK_TRANSFER
        and order.status == OrderStatus.PENDING
        and order.payment_deadline is not None
        and now > order.payment_deadline
    )


def _release_game_codes(order):
    """Put codes attached to an undelivered order back into inventory."""
    released = 0
    for game_code in order.game_codes.all():
        game_code.is_used = False
        game_code.order_id = None
        game_code.assigned_at = None
        released += 1
    if released:
        logger.info(
            "Released %d game codes of order %s", released, order.id)
    return released


def _release_order(order, reason):
    """Give back what an order holds: stock, codes and the wallet portion."""
    _return_stock(order)
    _release_game_codes(order)
    if order.user_id is not None and to_money(order.wallet_amount_used) > ZERO:
        wallet_service.refund_for_order(
            order, order.wallet_amount_used, reason=reason)


def _settled_by_wallet(order):
    """True when nothing is left to collect outside the wallet."""
    return (
        order.payment_method == PaymentMethod.WALLET
        or (order.payment_method != PaymentMethod.CASH_ON_DELIVERY
            and to_money(order.total_amount) == ZERO)
    )


def expire_if_overdue(order, now=None):
    """Cancel ``order`` if its bank-transfer deadline has passed.

    Returns True when the order was cancelled by this call.
    """
    now = now or utcnow()
    if not is_payment_expired(order, now):
        return False

    _release_order(order, AUTO_CANCEL_REASON)
    order.status = OrderStatus.CANCELLED
    order.cancelled_reason = AUTO_CANCEL_REASON
    order.cancelled_at = now
    db.session.flush()
    logger.info(
        "Order %s auto-cancelled, deadline %s passed",
        order.id,
        order.payment_deadline,
    )
    return True


def expire_overdue_orders(now=None):
    now = now or utcnow()
    candidates = Order.query.filter(
        Order.payment_method == PaymentMethod.BANK_TRANSFER,
        Order.status == OrderStatus.PENDING,
        Order.payment_deadline.isnot(None),
        Order.payment_deadline < now,
    ).all()
    return [order for order in candidates if expire_if_overdue(order, now)]


def mark_paid(order, now=None):
    now = now or utcnow()
    if order.status == OrderStatus.PAID:
        return order
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
        raise InvalidTransition(
            'Cash on delivery orders are paid on delivery, mark the order '
            'as delivered instead')
    if expire_if_overdue(order, now):
        raise InvalidTransition(
            'Payment deadline expired, the order was cancelled')
    if order.status != OrderStatus.PENDING:
        raise InvalidTransition(
            f'Cannot mark a {order.status.value} order as paid')

    order.status = OrderStatus.PAID
    order.payment_status = PaymentStatus.COMPLETED
    order.paid_at = now
    db.session.flush()
    return order


def pay_with_wallet(order, user, amount=None, now=None):
    """Settle part or all of a pending order from the owner's wallet.

    ``amount`` defaults to the whole amount due. The debit moves from
    ``total_amount`` to ``wallet_amount_used``; once nothing is left to
    collect the order is paid.
    """
    now = now or utcnow()
    if user is None or order.user_id != user.id:
        raise Forbidden('You can only pay for your own orders')
    if order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
        raise InvalidTransition(
            'Cash on delivery orders are paid on delivery')
    if expire_if_overdue(order, now):
        raise InvalidTransition(
            'Payment deadline expired, the order was cancelled')
    if order.status != OrderStatus.PENDING:
        raise InvalidTransition(
            f'Cannot pay for a {order.status.value} order')

    due = to_money(order.total_amount)
    if amount in (None, ''):
        amount = due
    elif isinstance(amount, bool):
        raise ValidationError('Invalid wallet amount')
    else:
        try:
            amount = to_money(amount)
        except (ArithmeticError, ValueError, TypeError):
            raise ValidationError('Invalid wallet amount')
    if amount <= ZERO:
        raise ValidationError('Wallet amount must be positive')
    if amount > due:
        raise ValidationError(
            'Wallet amount exceeds the amount due', amount_due=float(due))

    wallet_service.debit_for_order(order, amount)
    order.wallet_amount_used = to_money(order.wallet_amount_used) + amount
    order.total_amount = due - amount
    if order.total_amount == ZERO:
        order.status = OrderStatus.PAID
        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = now
        order.payment_deadline = None
    db.session.flush()
    logger.info(
        "Order %s: %s paid from wallet of user %s, %s left to collect",
        order.id, amount, user.id, order.total_amount)
    return order


def mark_delivered(order, now=None):
    """Close the order; credits cashback at most once.

    Re-triggering on an already delivered order changes nothing.
    """
    now = now or utcnow()
    if order.status == OrderStatus.DELIVERED:
        wallet_service.credit_cashback(order, now=now)
        return order

    cod_pending = (
        order.status == OrderStatus.PENDING
        and order.payment_method == PaymentMethod.CASH_ON_DELIVERY
    )
    if order.status != OrderStatus.PAID and not cod_pending:
        raise InvalidTransition(
            f'Cannot deliver a {order.status.value} order')
    if order.game_codes.count() == 0:
        raise InvalidTransition(
            'Attach the game codes before marking the order as delivered')

    if cod_pending:
        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = now
    order.status = OrderStatus.DELIVERED
    order.delivered_at = now
    db.session.flush()
    wallet_service.credit_cashback(order, now=now)
    return order


def cancel_order(order, reason, now=None):
    now = now or utcnow()
    reason = str(reason or '').strip()
    if not reason:
        raise ValidationError('A cancellation reason is required')
    if order.status not in (OrderStatus.PENDING, OrderStatus.PAID):
        raise InvalidTransition(
            f'Cannot cancel a {order.status.value} order')

    was_paid = order.status == OrderStatus.PAID
    _release_order(order, reason)
    order.status = OrderStatus.CANCELLED
    order.cancelled_reason = reason[:500]
    order.cancelled_at = now
    if was_paid:
        order.payment_status = PaymentStatus.REFUNDED
    db.session.flush()
    return order


def restore_order(order, now=None):
    """Bring a cancelled order back.

    Stock and the wallet portion released on cancellation are taken again.
    Orders the wallet fully covers come back paid; the others come back
    pending, and bank transfers get a fresh payment deadline.
    """
    now = now or utcnow()
    if order.status != OrderStatus.CANCELLED:
        raise InvalidTransition(
            f'Only cancelled orders can be restored, this one is '
            f'{order.status.value}')

    _retake_stock(order)
    if order.user_id is not None and to_money(order.wallet_amount_used) > ZERO:
        wallet_service.debit_for_order(order, order.wallet_amount_used)

    order.cancelled_reason = None
    order.cancelled_at = None
    if _settled_by_wallet(order):
        order.status = OrderStatus.PAID
        order.payment_status = PaymentStatus.COMPLETED
        order.paid_at = now
        order.payment_deadline = None
    else:
        order.status = OrderStatus.PENDING
        order.payment_status = PaymentStatus.PENDING
        order.paid_at = None
        if order.payment_method == PaymentMethod.BANK_TRANSFER:
            order.payment_deadline = now + timedelta(
                days=current_app.config['PAYMENT_DEADLINE_DAYS'])
    db.session.flush()
    return order


def change_status(order, status, reason=None, now=None):
    """Dispatch a requested status to the matching transition."""
    target = parse_enum(OrderStatus, status, 'status')
    if target == OrderStatus.PAID:
        return mark_paid(order, now=now)
    if target == OrderStatus.DELIVERED:
        return mark_delivered(order, now=now)
    if target == OrderStatus.CANCELLED:
        return cancel_order(order, reason, now=now)
    if order.status == OrderStatus.PENDING:
        return order
    return restore_order(order, now=now)


# ---------------------------------------------------------------------------
# Game codes
# ---------------------------------------------------------------------------

def _item_for_entry(order, entry):
    items = list(order.items)
    item_id = entry.get('order_item_id')
    product_id = entry.get('product_id')
    for item in items:
        if item_id is not None and item.id == item_id:
            return item
        if item_id is None and product_id is not None \
                and item.product_id == product_id:
            edition_id = entry.get('edition_id')
            if edition_id is None or edition_id == item.edition_id:
                return item
    raise ValidationError(
        'Game code does not match any item of this order',
        order_item_id=item_id,
        product_id=product_id,
    )


def attach_game_codes(order, entries, now=None):
    """Attach codes to the items of ``order``.

    Each entry names an order item (``order_item_id``, or ``product_id``
    with an optional ``edition_id``) and either gives the ``code`` to
    deliver or omits it to take the next unused code from inventory.
    """
    now = now or utcnow()
    if not isinstance(entries, list) or not entries:
        raise ValidationError('At least one game code is required')
    if order.status not in (OrderStatus.PENDING, OrderStatus.PAID):
        raise InvalidTransition(
            f'Cannot attach game codes to a {order.status.value} order')

    attached = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError('Invalid game code entry')
        item = _item_for_entry(order, entry)
        code_value = str(entry.get('code') or '').strip()

        if code_value:
            game_code = GameCode(
                product_id=item.product_id,
                edition_id=item.edition_id,
                code=code_value,
                platform=item.platform,
                product_type=item.product.product_type,
            )
            db.session.add(game_code)
        else:
            query = GameCode.query.filter_by(
                product_id=item.product_id,
                is_used=False,
                order_id=None,
            )
            if item.edition_id is not None:
                query = query.filter_by(edition_id=item.edition_id)
            game_code = query.order_by(GameCode.id).with_for_update().first()
            if game_code is None:
                raise InsufficientStock(
                    f'No unused game code left for {item.product_name}',
                    product_id=item.product_id,
                )

        game_code.is_used = True
        game_code.order_id = order.id
        game_code.assigned_at = now
        attached.append(game_code)

    db.session.flush()
    logger.info("Attached %d game codes to order %s", len(attached), order.id)
    return attached


def latest_codes_by_item(order):
    """The most recently attached code for each product/edition line."""
    latest = {}
    for code in order.game_codes.order_by(GameCode.id).all():
        latest[(code.product_id, code.edition_id)] = code
    return list(latest.values())
