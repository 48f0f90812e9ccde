from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UpsellPlacement(str, enum.Enum):
    product_page = "product_page"
    product_description = "product_description"
    cart_page = "cart_page"
    cart_drawer = "cart_drawer"
    checkout = "checkout"


class BlockRefKind(str, enum.Enum):
    """How an analytics row points back at the block that rendered it."""

    resolved = "resolved"
    unresolvable = "unresolvable"
    absent = "absent"


class UpsellBlock(Base):
    __tablename__ = "upsell_blocks"
    __table_args__ = (Index("ix_upsell_blocks_lookup", "shop", "placement", "active", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    placement: Mapped[UpsellPlacement] = mapped_column(
        Enum(UpsellPlacement, name="upsell_placement"), nullable=False, default=UpsellPlacement.checkout
    )

    collection_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_handles: Mapped[str | None] = mapped_column(Text, nullable=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False, default="Recommended for you")
    button_text: Mapped[str] = mapped_column(String(100), nullable=False, default="Add")
    show_count: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    auto_slide: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    slide_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    layout: Mapped[str] = mapped_column(String(50), nullable=False, default="stack")
    columns: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    background_color: Mapped[str] = mapped_column(String(32), nullable=False, default="#ffffff")
    text_color: Mapped[str] = mapped_column(String(32), nullable=False, default="#000000")
    button_color: Mapped[str] = mapped_column(String(32), nullable=False, default="#1a73e8")
    border_radius: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    padding: Mapped[int] = mapped_column(Integer, nullable=False, default=16)
    center_padding: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # JSON-encoded cart line attributes, passed through to the checkout client untouched.
    properties: Mapped[str | None] = mapped_column(Text, nullable=True)

    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class UpsellAnalytics(Base):
    __tablename__ = "upsell_analytics"
    __table_args__ = (Index("ix_upsell_analytics_shop_created", "shop", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Soft reference: blocks can be deleted while their analytics rows are kept.
    upsell_block_ref: Mapped[BlockRefKind] = mapped_column(
        Enum(BlockRefKind, name="upsell_block_ref"), nullable=False, default=BlockRefKind.absent
    )
    upsell_block_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    variant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_name: Mapped[str] = mapped_column(String(500), nullable=False)
    variant_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    placement: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    customer_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    added_to_cart: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now()
    )
