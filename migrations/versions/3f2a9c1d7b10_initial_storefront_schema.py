"""initial storefront schema

Revision ID: 3f2a9c1d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "3f2a9c1d7b10"
down_revision = None
branch_labels = None
depends_on = None

# Enums persist member names
user_role = sa.Enum("CUSTOMER", "MANAGER", "ADMIN", name="userrole")
order_status = sa.Enum(
    "PENDING", "PAID", "DELIVERED", "CANCELLED", name="orderstatus")
payment_status = sa.Enum(
    "PENDING", "COMPLETED", "REFUNDED", name="paymentstatus")
payment_method = sa.Enum(
    "BANK_TRANSFER", "CASH_ON_DELIVERY", "WALLET", name="paymentmethod")
wallet_tx_type = sa.Enum(
    "DEPOSIT",
    "WITHDRAWAL",
    "PAYMENT",
    "REFUND",
    "CASHBACK",
    "GIFT_CARD",
    name="wallettransactiontype",
)
discount_type = sa.Enum("PERCENTAGE", "FIXED", name="discounttype")
product_type = sa.Enum("GAME", "GIFT_CARD", name="producttype")
# Second use of the same type must not re-create it on PostgreSQL
game_code_product_type = postgresql.ENUM(
    "GAME", "GIFT_CARD", name="producttype", create_type=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("username", sa.String(length=100), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("phone_number", sa.String(length=30), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column(
            "wallet_balance",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "wallet_balance >= 0",
            name="check_wallet_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_email", ["email"], unique=True)
        batch_op.create_index("ix_users_username", ["username"], unique=True)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "discounted_price",
            sa.Numeric(precision=10, scale=2),
            nullable=True),
        sa.Column("platform", sa.String(length=50), nullable=False),
        sa.Column("image_url", sa.String(length=255), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("featured", sa.Boolean(), nullable=False),
        sa.Column("is_new_release", sa.Boolean(), nullable=False),
        sa.Column("is_on_sale", sa.Boolean(), nullable=False),
        sa.Column("is_pre_order", sa.Boolean(), nullable=False),
        sa.Column("has_editions", sa.Boolean(), nullable=False),
        sa.Column("product_type", product_type, nullable=False),
        sa.Column("is_game_credit", sa.Boolean(), nullable=False),
        sa.Column(
            "credit_value",
            sa.Numeric(precision=10, scale=2),
            nullable=True),
        sa.Column("release_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("stock >= 0", name="check_product_stock"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_name", ["name"], unique=False)
        batch_op.create_index(
            "ix_products_platform", ["platform"], unique=False)

    op.create_table(
        "product_editions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "discounted_price",
            sa.Numeric(precision=10, scale=2),
            nullable=True),
        sa.Column("image_url", sa.String(length=255), nullable=True),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("bonus_content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("stock >= 0", name="check_edition_stock"),
        sa.ForeignKeyConstraint(
            ["product_id"], ["products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("product_editions", schema=None) as batch_op:
        batch_op.create_index(
            "ix_product_editions_product_id", ["product_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("status", order_status, nullable=False),
        sa.Column("payment_status", payment_status, nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone_number", sa.String(length=30), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column(
            "subtotal_before_discount",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("promo_code", sa.String(length=50), nullable=True),
        sa.Column(
            "promo_discount",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column(
            "wallet_amount_used",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("cod_fee", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "total_amount",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("payment_deadline", sa.DateTime(), nullable=True),
        sa.Column("cancelled_reason", sa.String(length=500), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(), nullable=True),
        sa.Column(
            "cashback_amount",
            sa.Numeric(precision=10, scale=2),
            nullable=True),
        sa.Column("cashback_credited_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("total_amount >= 0", name="check_order_total"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("edition_id", sa.Integer(), nullable=True),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=True),
        sa.Column(
            "unit_price",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "quantity > 0", name="check_order_quantity_positive"),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["edition_id"], ["product_editions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index(
            "ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index(
            "ix_order_items_product_id", ["product_id"], unique=False)

    op.create_table(
        "game_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("edition_id", sa.Integer(), nullable=True),
        sa.Column("code", sa.String(length=255), nullable=False),
        sa.Column("platform", sa.String(length=50), nullable=True),
        sa.Column("product_type", game_code_product_type, nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["edition_id"], ["product_editions.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("game_codes", schema=None) as batch_op:
        batch_op.create_index(
            "ix_game_codes_product_id", ["product_id"], unique=False)
        batch_op.create_index(
            "ix_game_codes_order_id", ["order_id"], unique=False)

    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column(
            "balance_after",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("type", wallet_tx_type, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("wallet_transactions", schema=None) as batch_op:
        batch_op.create_index(
            "ix_wallet_transactions_user_id", ["user_id"], unique=False)
        batch_op.create_index(
            "ix_wallet_transactions_order_id", ["order_id"], unique=False)
        batch_op.create_index(
            "ix_wallet_transactions_created_at",
            ["created_at"],
            unique=False)

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column(
            "discount_value",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=True),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        sa.Column(
            "minimum_order_amount",
            sa.Numeric(precision=10, scale=2),
            nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses",
            name="check_promo_used_count"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("promo_codes", schema=None) as batch_op:
        batch_op.create_index("ix_promo_codes_code", ["code"], unique=True)

    op.create_table(
        "promo_code_usages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("promo_code_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("email", sa.String(length=120), nullable=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column(
            "discount_applied",
            sa.Numeric(precision=10, scale=2),
            nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["promo_code_id"], ["promo_codes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(
            ["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "promo_code_id", "order_id", name="uq_promo_usage_order"),
    )
    with op.batch_alter_table("promo_code_usages", schema=None) as batch_op:
        batch_op.create_index(
            "ix_promo_code_usages_promo_code_id",
            ["promo_code_id"],
            unique=False)
        batch_op.create_index(
            "ix_promo_code_usages_user_id", ["user_id"], unique=False)
        batch_op.create_index(
            "ix_promo_code_usages_email", ["email"], unique=False)

    op.create_table(
        "gift_card_denominations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("platform_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("stock", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["platform_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table(
            "gift_card_denominations", schema=None) as batch_op:
        batch_op.create_index(
            "ix_gift_card_denominations_platform_id",
            ["platform_id"],
            unique=False)

    op.create_table(
        "gift_cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("denomination_id", sa.Integer(), nullable=True),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_redeemed", sa.Boolean(), nullable=False),
        sa.Column("expiry_date", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(), nullable=True),
        sa.Column("redeemed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["denomination_id"], ["gift_card_denominations.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["redeemed_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("gift_cards", schema=None) as batch_op:
        batch_op.create_index("ix_gift_cards_code", ["code"], unique=True)
        batch_op.create_index(
            "ix_gift_cards_denomination_id",
            ["denomination_id"],
            unique=False)

    op.create_table(
        "store_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index(
            "ix_audit_logs_created_at", ["created_at"], unique=False)


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("store_settings")
    op.drop_table("gift_cards")
    op.drop_table("gift_card_denominations")
    op.drop_table("promo_code_usages")
    op.drop_table("promo_codes")
    op.drop_table("wallet_transactions")
    op.drop_table("game_codes")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("product_editions")
    op.drop_table("products")
    op.drop_table("users")
