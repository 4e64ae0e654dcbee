"""create_market_and_payments_tables

Revision ID: 3f1c9a2b7d10
Revises:
Create Date: 2026-01-04 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

location_status = sa.Enum(
    "active", "inactive", "suspended", name="market_seller_location_status_enum"
)
offer_condition = sa.Enum("new", "open_box", "tester", name="market_offer_condition_enum")
auth_grade = sa.Enum(
    "sealed", "store_bill", "verified_unknown", name="market_auth_grade_enum"
)
movement_type = sa.Enum(
    "sale", "restock", "adjustment", name="market_stock_movement_type_enum"
)
order_status = sa.Enum(
    "pending",
    "paid",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    name="market_order_status_enum",
)
payment_mode = sa.Enum("prepaid", "cod", name="market_payment_mode_enum")
shipment_status = sa.Enum(
    "created", "in_transit", "delivered", "returned", name="market_shipment_status_enum"
)
payment_status = sa.Enum(
    "pending",
    "completed",
    "failed",
    "refunded",
    "partial_refund",
    name="payment_status_enum",
)
payment_provider = sa.Enum("razorpay", name="payment_provider_enum")


def _timestamps(*, updated: bool = True) -> list:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return columns


def upgrade() -> None:
    """Upgrade schema - Add market settlement and payment tables."""

    op.create_table(
        "market_products",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("brand_name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_products_slug", "market_products", ["slug"], unique=True)

    op.create_table(
        "market_product_variants",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("size_ml", sa.Integer(), nullable=True),
        sa.Column("mrp_paise", sa.Integer(), nullable=False),
        sa.Column("sale_paise", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("mrp_paise >= 0", name="ck_variant_mrp_non_negative"),
        sa.CheckConstraint(
            "sale_paise IS NULL OR sale_paise >= 0", name="ck_variant_sale_non_negative"
        ),
        sa.ForeignKeyConstraint(["product_id"], ["market_products.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_market_product_variants_product_id", "market_product_variants", ["product_id"]
    )
    op.create_index(
        "ix_market_product_variants_sku", "market_product_variants", ["sku"], unique=True
    )

    op.create_table(
        "market_sellers",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("owner_auth_id", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_sellers_owner_auth_id", "market_sellers", ["owner_auth_id"])

    op.create_table(
        "market_seller_locations",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), nullable=False),
        sa.Column("label", sa.String(255), nullable=False),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("pincode", sa.String(20), nullable=True),
        sa.Column("status", location_status, nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["seller_id"], ["market_sellers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_market_seller_locations_seller_id", "market_seller_locations", ["seller_id"]
    )

    op.create_table(
        "market_offers",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_location_id", UUID(as_uuid=True), nullable=False),
        sa.Column("variant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("price_paise", sa.Integer(), nullable=False),
        sa.Column("shipping_paise", sa.Integer(), nullable=False),
        sa.Column("effective_price_paise", sa.Integer(), nullable=False),
        sa.Column("stock_qty", sa.Integer(), nullable=False),
        sa.Column("condition", offer_condition, nullable=False),
        sa.Column("auth_grade", auth_grade, nullable=False),
        sa.Column("cond_rank", sa.Integer(), nullable=False),
        sa.Column("auth_rank", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("stock_qty >= 0", name="ck_offer_stock_non_negative"),
        sa.CheckConstraint("price_paise >= 0", name="ck_offer_price_non_negative"),
        sa.CheckConstraint("shipping_paise >= 0", name="ck_offer_shipping_non_negative"),
        sa.ForeignKeyConstraint(["seller_id"], ["market_sellers.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["seller_location_id"], ["market_seller_locations.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["variant_id"], ["market_product_variants.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "seller_id",
            "seller_location_id",
            "variant_id",
            name="uq_offer_seller_location_variant",
        ),
    )
    op.create_index("ix_market_offers_seller_id", "market_offers", ["seller_id"])
    op.create_index(
        "ix_market_offers_seller_location_id", "market_offers", ["seller_location_id"]
    )
    op.create_index("ix_market_offers_variant_id", "market_offers", ["variant_id"])
    op.create_index(
        "ix_offer_variant_ranking",
        "market_offers",
        ["variant_id", "is_active", "effective_price_paise"],
    )

    op.create_table(
        "market_live_offers",
        sa.Column("variant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("offer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_location_id", UUID(as_uuid=True), nullable=False),
        sa.Column("price_paise", sa.Integer(), nullable=False),
        sa.Column("shipping_paise", sa.Integer(), nullable=False),
        sa.Column("effective_price_paise", sa.Integer(), nullable=False),
        sa.Column("stock_qty_snapshot", sa.Integer(), nullable=False),
        sa.Column("condition", offer_condition, nullable=False),
        sa.Column("auth_grade", auth_grade, nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["variant_id"], ["market_product_variants.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["offer_id"], ["market_offers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("variant_id"),
    )
    op.create_index("ix_market_live_offers_offer_id", "market_live_offers", ["offer_id"])

    op.create_table(
        "market_offer_stock_movements",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("offer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("variant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("movement_type", movement_type, nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.String(255), nullable=True),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["offer_id"], ["market_offers.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_market_offer_stock_movements_offer_id",
        "market_offer_stock_movements",
        ["offer_id"],
    )
    op.create_index(
        "ix_market_offer_stock_movements_variant_id",
        "market_offer_stock_movements",
        ["variant_id"],
    )

    op.create_table(
        "market_carts",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("guest_token", sa.String(64), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_carts_user_id", "market_carts", ["user_id"], unique=True)
    op.create_index(
        "ix_market_carts_guest_token", "market_carts", ["guest_token"], unique=True
    )
    op.create_index("ix_market_carts_expires_at", "market_carts", ["expires_at"])

    op.create_table(
        "market_cart_items",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("cart_id", UUID(as_uuid=True), nullable=False),
        sa.Column("variant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity >= 1", name="ck_cart_item_quantity_positive"),
        sa.ForeignKeyConstraint(["cart_id"], ["market_carts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["variant_id"], ["market_product_variants.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("cart_id", "variant_id", name="uq_cart_item_variant"),
    )
    op.create_index("ix_market_cart_items_cart_id", "market_cart_items", ["cart_id"])

    op.create_table(
        "market_orders",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("guest_email", sa.String(255), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(32), nullable=True),
        sa.Column("status", order_status, nullable=False),
        sa.Column("payment_mode", payment_mode, nullable=False),
        sa.Column("subtotal_paise", sa.Integer(), nullable=False),
        sa.Column("tax_paise", sa.Integer(), nullable=False),
        sa.Column("shipping_paise", sa.Integer(), nullable=False),
        sa.Column("discount_paise", sa.Integer(), nullable=False),
        sa.Column("total_paise", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("billing_address", JSONB(), nullable=False),
        sa.Column("shipping_address", JSONB(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("payment_id", UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("total_paise >= 0", name="ck_order_total_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_market_orders_order_number", "market_orders", ["order_number"], unique=True
    )
    op.create_index("ix_market_orders_guest_email", "market_orders", ["guest_email"])
    op.create_index(
        "ix_market_orders_user_created", "market_orders", ["user_id", "created_at"]
    )

    op.create_table(
        "market_order_items",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), nullable=False),
        sa.Column("variant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), nullable=False),
        sa.Column("offer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_location_id", UUID(as_uuid=True), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("size_ml", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_paise", sa.Integer(), nullable=False),
        sa.Column("line_total_paise", sa.Integer(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["order_id"], ["market_orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_order_items_order_id", "market_order_items", ["order_id"])
    op.create_index("ix_market_order_items_seller_id", "market_order_items", ["seller_id"])

    op.create_table(
        "market_shipments",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), nullable=False),
        sa.Column("carrier", sa.String(100), nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("status", shipment_status, nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["order_id"], ["market_orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_market_shipments_order_id", "market_shipments", ["order_id"])

    op.create_table(
        "payments",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("provider", payment_provider, nullable=False),
        sa.Column("provider_order_id", sa.String(64), nullable=True),
        sa.Column("provider_payment_id", sa.String(64), nullable=True),
        sa.Column("status", payment_status, nullable=False),
        sa.Column("method", sa.String(32), nullable=True),
        sa.Column("amount_paise", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("transaction_ts", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount_paise > 0", name="ck_payment_amount_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["market_orders.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_order_id"),
        sa.UniqueConstraint("provider_payment_id"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=True)

    op.create_table(
        "payment_events",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("payment_id", UUID(as_uuid=True), nullable=False),
        sa.Column("provider", payment_provider, nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", JSONB(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_payment_events_payment_id", "payment_events", ["payment_id"])


def downgrade() -> None:
    """Downgrade schema - Drop market settlement and payment tables."""
    op.drop_table("payment_events")
    op.drop_table("payments")
    op.drop_table("market_shipments")
    op.drop_table("market_order_items")
    op.drop_table("market_orders")
    op.drop_table("market_cart_items")
    op.drop_table("market_carts")
    op.drop_table("market_offer_stock_movements")
    op.drop_table("market_live_offers")
    op.drop_table("market_offers")
    op.drop_table("market_seller_locations")
    op.drop_table("market_sellers")
    op.drop_table("market_product_variants")
    op.drop_table("market_products")

    bind = op.get_bind()
    for enum_type in (
        payment_provider,
        payment_status,
        shipment_status,
        payment_mode,
        order_status,
        movement_type,
        auth_grade,
        offer_condition,
        location_status,
    ):
        enum_type.drop(bind, checkfirst=True)
