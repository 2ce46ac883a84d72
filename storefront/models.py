from storefront.extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import CheckConstraint, UniqueConstraint
import enum
import json


def utcnow():
    # Naive UTC, the convention for every DateTime column below.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(enum.Enum):
    CUSTOMER = 'customer'
    MANAGER = 'manager'
    ADMIN = 'admin'


class Permission(enum.Enum):
    MANAGE_ORDERS = 'manage_orders'
    MANAGE_PRODUCTS = 'manage_products'
    DELETE_PRODUCTS = 'delete_products'
    MANAGE_GAME_CODES = 'manage_game_codes'
    MANAGE_USERS = 'manage_users'
    MANAGE_PROMO_CODES = 'manage_promo_codes'
    MANAGE_GIFT_CARDS = 'manage_gift_cards'
    MANAGE_WALLETS = 'manage_wallets'
    MANAGE_SETTINGS = 'manage_settings'
    VIEW_DASHBOARD = 'view_dashboard'


ROLE_PERMISSIONS = {
    UserRole.CUSTOMER: frozenset(),
    UserRole.MANAGER: frozenset({
        Permission.MANAGE_ORDERS,
        Permission.MANAGE_PRODUCTS,
        Permission.MANAGE_GAME_CODES,
        Permission.VIEW_DASHBOARD,
    }),
    UserRole.ADMIN: frozenset(Permission),
}


def has_permission(user, permission):
    if user is None or not getattr(user, 'is_authenticated', False):
        return False
    role = getattr(user, 'role', None)
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


class OrderStatus(enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    REFUNDED = 'refunded'


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = 'bank_transfer'
    CASH_ON_DELIVERY = 'cash_on_delivery'
    WALLET = 'wallet'


class ProductType(enum.Enum):
    GAME = 'game'
    GIFT_CARD = 'gift_card'


class WalletTransactionType(enum.Enum):
    DEPOSIT = 'deposit'
    WITHDRAWAL = 'withdrawal'
    PAYMENT = 'payment'
    REFUND = 'refund'
    CASHBACK = 'cashback'
    GIFT_CARD = 'gift_card'


class DiscountType(enum.Enum):
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    username = db.Column(
        db.String(100),
        unique=True,
        nullable=True,
        index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    # Denormalized; every change goes through wallet_service together with
    # its ledger row.
    wallet_balance = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    orders = db.relationship('Order', backref='user', lazy='dynamic')
    wallet_transactions = db.relationship(
        'WalletTransaction',
        backref='user',
        lazy='dynamic')

    __table_args__ = (
        CheckConstraint(
            'wallet_balance >= 0',
            name='check_wallet_balance_non_negative'),
    )

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def has_permission(self, permission):
        return has_permission(self, permission)

    @property
    def is_staff(self):
        return self.role in (UserRole.ADMIN, UserRole.MANAGER)

    def __repr__(self):
        return f'<User {self.email}>'


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False, default='')
    price = db.Column(db.Numeric(10, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(10, 2), nullable=True)
    platform = db.Column(db.String(50), nullable=False, index=True)
    image_url = db.Column(db.String(255), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    featured = db.Column(db.Boolean, default=False, nullable=False)
    is_new_release = db.Column(db.Boolean, default=False, nullable=False)
    is_on_sale = db.Column(db.Boolean, default=False, nullable=False)
    is_pre_order = db.Column(db.Boolean, default=False, nullable=False)
    has_editions = db.Column(db.Boolean, default=False, nullable=False)
    product_type = db.Column(
        db.Enum(ProductType),
        default=ProductType.GAME,
        nullable=False)
    is_game_credit = db.Column(db.Boolean, default=False, nullable=False)
    credit_value = db.Column(db.Numeric(10, 2), nullable=True)
    release_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    # Soft delete
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)

    editions = db.relationship(
        'ProductEdition',
        backref='product',
        lazy='dynamic',
        cascade='all, delete-orphan')
    game_codes = db.relationship(
        'GameCode',
        backref='product',
        lazy='dynamic')

    __table_args__ = (
        CheckConstraint('stock >= 0', name='check_product_stock'),
    )

    @property
    def unit_price(self):
        if self.discounted_price is not None:
            return self.discounted_price
        return self.price

    def __repr__(self):
        return f'<Product {self.name}>'


class ProductEdition(db.Model):
    __tablename__ = 'product_editions'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    price = db.Column(db.Numeric(10, 2), nullable=False)
    discounted_price = db.Column(db.Numeric(10, 2), nullable=True)
    image_url = db.Column(db.String(255), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    bonus_content = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('stock >= 0', name='check_edition_stock'),
    )

    @property
    def unit_price(self):
        if self.discounted_price is not None:
            return self.discounted_price
        return self.price

    def __repr__(self):
        return f'<ProductEdition {self.name} of product {self.product_id}>'


class Order(db.Model):
    __tablename__ = 'orders'

    id = db.Column(db.Integer, primary_key=True)
    # NULL for guest checkouts
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True,
        index=True)
    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True)
    payment_status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=False)

    # Contact snapshot, also used for guest order verification
    email = db.Column(db.String(120), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone_number = db.Column(db.String(30), nullable=False)
    city = db.Column(db.String(100), nullable=True)

    # total_amount = subtotal_before_discount - promo_discount
    #                - wallet_amount_used + cod_fee
    subtotal_before_discount = db.Column(db.Numeric(10, 2), nullable=False)
    promo_code = db.Column(db.String(50), nullable=True)
    promo_discount = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    wallet_amount_used = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    cod_fee = db.Column(
        db.Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00'))
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)

    payment_deadline = db.Column(db.DateTime, nullable=True)
    cancelled_reason = db.Column(db.String(500), nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    cashback_amount = db.Column(db.Numeric(10, 2), nullable=True)
    cashback_credited_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False)

    items = db.relationship(
        'OrderItem',
        backref='order',
        lazy='dynamic',
        cascade='all, delete-orphan')
    game_codes = db.relationship(
        'GameCode',
        backref='order',
        lazy='dynamic')

    __table_args__ = (
        CheckConstraint('total_amount >= 0', name='check_order_total'),
    )

    @property
    def order_number(self):
        return f'SD{self.id:06d}' if self.id is not None else None

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False,
        index=True)
    edition_id = db.Column(
        db.Integer,
        db.ForeignKey('product_editions.id'),
        nullable=True)
    # Order snapshot of name, platform and price.
    product_name = db.Column(db.String(200), nullable=False)
    platform = db.Column(db.String(50), nullable=True)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)

    product = db.relationship('Product')
    edition = db.relationship('ProductEdition')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
    )

    @property
    def line_total(self):
        return self.unit_price * self.quantity

    def __repr__(self):
        return (
            f"<OrderItem {self.id} order={self.order_id} "
            f"product={self.product_id}>"
        )


class GameCode(db.Model):
    __tablename__ = 'game_codes'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False,
        index=True)
    edition_id = db.Column(
        db.Integer,
        db.ForeignKey('product_editions.id'),
        nullable=True)
    code = db.Column(db.String(255), nullable=False)
    platform = db.Column(db.String(50), nullable=True)
    product_type = db.Column(
        db.Enum(ProductType),
        default=ProductType.GAME,
        nullable=False)
    is_used = db.Column(db.Boolean, default=False, nullable=False)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        nullable=True,
        index=True)
    assigned_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    def __repr__(self):
        return f'<GameCode {self.id} product={self.product_id}>'


class WalletTransaction(db.Model):
    __tablename__ = 'wallet_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False,
        index=True)
    # Signed: equals the balance delta this entry caused.
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    balance_after = db.Column(db.Numeric(10, 2), nullable=False)
    type = db.Column(db.Enum(WalletTransactionType), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='completed')
    order_id = db.Column(
        db.Integer,
        db.ForeignKey('orders.id'),
        nullable=True,
        index=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False,
        index=True)

    def __repr__(self):
        return (
            f'<WalletTransaction {self.id} user={self.user_id} '
            f'amount={self.amount}>'
        )


class PromoCode(db.Model):
    __tablename__ = 'promo_codes'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, nullable=False, index=True)
    discount_type = db.Column(db.Enum(DiscountType), nullable=False)
    discount_value = db.Column(db.Numeric(10, 2), nullable=False)
    max_uses = db.Column(db.Integer, nullable=True)
    max_uses_per_user = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    minimum_order_amount = db.Column(db.Numeric(10, 2), nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    usages = db.relationship(
        'PromoCodeUsage',
        backref='promo_code',
        lazy='dynamic',
        cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint(
            'max_uses IS NULL OR used_count <= max_uses',
            name='check_promo_used_count'),
    )

    def __repr__(self):
        return f'<PromoCode {self.code}>'


class PromoCodeUsage(db.Model):
    __tablename__ = 'promo_code_usages'

    id = db.Column(db.Integer, primary_key=True)
    promo_code_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'promo_codes.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True,
        index=True)
    # Guest redemptions are capped per e-mail.
    email = db.Column(db.String(120), nullable=True, index=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False)
    discount_applied = db.Column(db.Numeric(10, 2), nullable=False)
    used_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    __table_args__ = (
        UniqueConstraint(
            'promo_code_id',
            'order_id',
            name='uq_promo_usage_order'),
    )

    def __repr__(self):
        return (
            f"<PromoCodeUsage promo={self.promo_code_id} "
            f"order={self.order_id}>"
        )


class GiftCardDenomination(db.Model):
    __tablename__ = 'gift_card_denominations'

    id = db.Column(db.Integer, primary_key=True)
    # The gift-card product (platform) this denomination belongs to
    platform_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False,
        index=True)
    name = db.Column(db.String(100), nullable=False)
    value = db.Column(db.Numeric(10, 2), nullable=False)
    stock = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    platform = db.relationship('Product')
    gift_cards = db.relationship(
        'GiftCard',
        backref='denomination',
        lazy='dynamic')

    def __repr__(self):
        return f'<GiftCardDenomination {self.name}>'


class GiftCard(db.Model):
    __tablename__ = 'gift_cards'

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False, index=True)
    value = db.Column(db.Numeric(10, 2), nullable=False)
    denomination_id = db.Column(
        db.Integer,
        db.ForeignKey('gift_card_denominations.id'),
        nullable=True,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_redeemed = db.Column(db.Boolean, default=False, nullable=False)
    expiry_date = db.Column(db.DateTime, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    redeemed_at = db.Column(db.DateTime, nullable=True)
    redeemed_by_user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False)

    redeemed_by = db.relationship('User', foreign_keys=[redeemed_by_user_id])

    def __repr__(self):
        return f'<GiftCard {self.code} redeemed={self.is_redeemed}>'


class StoreSetting(db.Model):
    __tablename__ = 'store_settings'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value_json = db.Column(db.Text, nullable=False, default='{}')
    updated_at = db.Column(
        db.DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False)

    def get_value(self):
        if self.value_json:
            return json.loads(self.value_json)
        return {}

    def set_value(self, data):
        self.value_json = json.dumps(data, ensure_ascii=False)

    def __repr__(self):
        return f'<StoreSetting {self.key}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(20), nullable=False)
    # e.g., ORDER_CREATE, ORDER_AUTO_CANCEL_UNPAID, WALLET_ADJUST
    action = db.Column(db.String(100), nullable=False)
    # ORDER, USER, PROMO_CODE, GIFT_CARD, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
