"""upsell blocks, upsell analytics and webhook log

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None

upsell_placement = postgresql.ENUM(
    "product_page",
    "product_description",
    "cart_page",
    "cart_drawer",
    "checkout",
    name="upsell_placement",
    create_type=False,
)
upsell_block_ref = postgresql.ENUM("resolved", "unresolvable", "absent", name="upsell_block_ref", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    upsell_placement.create(bind, checkfirst=True)
    upsell_block_ref.create(bind, checkfirst=True)

    op.create_table(
        "upsell_blocks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("shop", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("placement", upsell_placement, nullable=False, server_default="checkout"),
        sa.Column("collection_handle", sa.String(length=255), nullable=True),
        sa.Column("product_handles", sa.Text(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default="Recommended for you"),
        sa.Column("button_text", sa.String(length=100), nullable=False, server_default="Add"),
        sa.Column("show_count", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("auto_slide", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("slide_duration", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("layout", sa.String(length=50), nullable=False, server_default="stack"),
        sa.Column("columns", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("background_color", sa.String(length=32), nullable=False, server_default="#ffffff"),
        sa.Column("text_color", sa.String(length=32), nullable=False, server_default="#000000"),
        sa.Column("button_color", sa.String(length=32), nullable=False, server_default="#1a73e8"),
        sa.Column("border_radius", sa.Integer(), nullable=False, server_default="8"),
        sa.Column("padding", sa.Integer(), nullable=False, server_default="16"),
        sa.Column("center_padding", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("properties", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_upsell_blocks_shop", "upsell_blocks", ["shop"], unique=False)
    op.create_index(
        "ix_upsell_blocks_lookup", "upsell_blocks", ["shop", "placement", "active", "created_at"], unique=False
    )

    op.create_table(
        "upsell_analytics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("shop", sa.String(length=255), nullable=False),
        sa.Column("upsell_block_ref", upsell_block_ref, nullable=False, server_default="absent"),
        sa.Column("upsell_block_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("product_id", sa.String(length=255), nullable=False),
        sa.Column("variant_id", sa.String(length=255), nullable=False),
        sa.Column("product_name", sa.String(length=500), nullable=False),
        sa.Column("variant_title", sa.String(length=500), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("placement", sa.String(length=50), nullable=False),
        sa.Column("customer_hash", sa.String(length=255), nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("added_to_cart", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_upsell_analytics_shop", "upsell_analytics", ["shop"], unique=False)
    op.create_index("ix_upsell_analytics_placement", "upsell_analytics", ["placement"], unique=False)
    op.create_index("ix_upsell_analytics_upsell_block_id", "upsell_analytics", ["upsell_block_id"], unique=False)
    op.create_index("ix_upsell_analytics_shop_created", "upsell_analytics", ["shop", "created_at"], unique=False)

    op.create_table(
        "shopify_webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("webhook_id", sa.String(length=255), nullable=False),
        sa.Column("topic", sa.String(length=100), nullable=False),
        sa.Column("shop", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_shopify_webhook_events_webhook_id", "shopify_webhook_events", ["webhook_id"], unique=True
    )
    op.create_index("ix_shopify_webhook_events_shop", "shopify_webhook_events", ["shop"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_shopify_webhook_events_shop", table_name="shopify_webhook_events")
    op.drop_index("ix_shopify_webhook_events_webhook_id", table_name="shopify_webhook_events")
    op.drop_table("shopify_webhook_events")

    op.drop_index("ix_upsell_analytics_shop_created", table_name="upsell_analytics")
    op.drop_index("ix_upsell_analytics_upsell_block_id", table_name="upsell_analytics")
    op.drop_index("ix_upsell_analytics_placement", table_name="upsell_analytics")
    op.drop_index("ix_upsell_analytics_shop", table_name="upsell_analytics")
    op.drop_table("upsell_analytics")

    op.drop_index("ix_upsell_blocks_lookup", table_name="upsell_blocks")
    op.drop_index("ix_upsell_blocks_shop", table_name="upsell_blocks")
    op.drop_table("upsell_blocks")

    bind = op.get_bind()
    upsell_block_ref.drop(bind, checkfirst=True)
    upsell_placement.drop(bind, checkfirst=True)
