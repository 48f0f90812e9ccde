from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from fastapi import HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.core.config import settings
from app.models.upsell import UpsellAnalytics, UpsellBlock, UpsellPlacement
from app.schemas.upsell import UpsellBlockCreate, UpsellBlockUpdate

logger = logging.getLogger(__name__)

DEFAULT_PLACEMENT = UpsellPlacement.checkout.value
DEFAULT_TITLE = "Recommended for you"
DEFAULT_SHOW_COUNT = 4
DEFAULT_SLIDE_DURATION = 5


class PlacementNotAllowedError(ValueError):
    """Raised when the deployment only serves a subset of placements."""


@dataclass(frozen=True)
class UpsellConfiguration:
    """What the checkout client renders; immutable so the default can be shared."""

    title: str
    show_count: int
    auto_slide: bool
    slide_duration: int
    collection_handle: str | None = None
    product_handles: tuple[str, ...] = field(default_factory=tuple)
    layout: str | None = None
    columns: int | None = None
    background_color: str | None = None
    text_color: str | None = None
    button_color: str | None = None
    button_text: str | None = None
    properties: str | None = None
    border_radius: int | None = None
    padding: int | None = None
    center_padding: bool | None = None
    upsell_block_id: uuid.UUID | None = None

    @property
    def is_default(self) -> bool:
        return self.upsell_block_id is None


def default_configuration() -> UpsellConfiguration:
    return UpsellConfiguration(
        title=DEFAULT_TITLE,
        show_count=DEFAULT_SHOW_COUNT,
        auto_slide=False,
        slide_duration=DEFAULT_SLIDE_DURATION,
    )


def split_handles(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [handle.strip() for handle in raw.split(",") if handle.strip()]


# Each strategy returns a handle list, or None when it has nothing to offer.
HandleStrategy = Callable[[UpsellBlock], "list[str] | None"]


def legacy_product_handles(block: UpsellBlock) -> list[str] | None:
    return split_handles(block.product_handles) or None


def configured_fallback_handles(block: UpsellBlock) -> list[str] | None:
    if not block.collection_handle:
        return None
    fallback = [handle.strip() for handle in settings.upsell_fallback_product_handles if handle and handle.strip()]
    return fallback or None


PRODUCT_HANDLE_STRATEGIES: tuple[HandleStrategy, ...] = (
    legacy_product_handles,
    configured_fallback_handles,
)


def resolve_product_handles(block: UpsellBlock, strategies: Sequence[HandleStrategy] = PRODUCT_HANDLE_STRATEGIES) -> list[str]:
    for strategy in strategies:
        handles = strategy(block)
        if handles:
            return handles
    return []


def configuration_from_block(block: UpsellBlock) -> UpsellConfiguration:
    return UpsellConfiguration(
        title=block.title,
        show_count=block.show_count,
        auto_slide=block.auto_slide,
        slide_duration=block.slide_duration,
        collection_handle=block.collection_handle or None,
        product_handles=tuple(resolve_product_handles(block)),
        layout=block.layout,
        columns=block.columns,
        background_color=block.background_color,
        text_color=block.text_color,
        button_color=block.button_color,
        button_text=block.button_text,
        properties=block.properties,
        border_radius=block.border_radius,
        padding=block.padding,
        center_padding=block.center_padding,
        upsell_block_id=block.id,
    )


def normalize_placement(raw: str | None) -> str:
    placement = (raw or "").strip() or DEFAULT_PLACEMENT
    if settings.upsell_checkout_only and placement != DEFAULT_PLACEMENT:
        raise PlacementNotAllowedError("Only checkout placement is supported")
    return placement


async def get_active_block(session: AsyncSession, shop: str, placement: str) -> UpsellBlock | None:
    """Most recently created active block for (shop, placement); storage errors read as "none"."""
    try:
        placement_value = UpsellPlacement(placement)
    except ValueError:
        return None
    stmt = (
        select(UpsellBlock)
        .where(
            UpsellBlock.shop == shop,
            UpsellBlock.placement == placement_value,
            UpsellBlock.active.is_(True),
        )
        .order_by(UpsellBlock.created_at.desc(), UpsellBlock.id.desc())
        .limit(1)
    )
    try:
        result = await session.execute(stmt)
        return result.scalars().first()
    except (SQLAlchemyError, OSError) as exc:
        logger.warning(
            "upsell_lookup_failed",
            extra={"shop": shop, "placement": placement, "error": str(exc)},
        )
        return None


async def resolve(session: AsyncSession, shop: str, placement: str = DEFAULT_PLACEMENT) -> UpsellConfiguration:
    block = await get_active_block(session, shop, placement)
    config = default_configuration() if block is None else configuration_from_block(block)
    metrics.increment(metrics.UPSELLS_DEFAULT_SERVED if config.is_default else metrics.UPSELLS_RESOLVED)
    return config


# Admin-side management. Every lookup is scoped by shop.


def _default_block_name(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"Checkout Upsell - {now.date().isoformat()}"


async def list_blocks(session: AsyncSession, shop: str) -> list[UpsellBlock]:
    result = await session.execute(
        select(UpsellBlock).where(UpsellBlock.shop == shop).order_by(UpsellBlock.created_at.desc())
    )
    return list(result.scalars().all())


async def get_block_for_shop(session: AsyncSession, shop: str, block_id: uuid.UUID) -> UpsellBlock:
    block = await session.get(UpsellBlock, block_id)
    if block is None or block.shop != shop:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Upsell block not found")
    return block


async def _deactivate_siblings(session: AsyncSession, block: UpsellBlock) -> None:
    await session.execute(
        update(UpsellBlock)
        .where(
            UpsellBlock.shop == block.shop,
            UpsellBlock.placement == block.placement,
            UpsellBlock.active.is_(True),
            UpsellBlock.id != block.id,
        )
        .values(active=False)
    )


async def create_block(session: AsyncSession, shop: str, payload: UpsellBlockCreate) -> UpsellBlock:
    data: dict[str, Any] = payload.model_dump()
    data["name"] = (data.get("name") or "").strip() or _default_block_name()
    block = UpsellBlock(id=uuid.uuid4(), shop=shop, **data)
    session.add(block)
    if block.active:
        await _deactivate_siblings(session, block)
    await session.commit()
    await session.refresh(block)
    logger.info(
        "upsell_block_created",
        extra={"shop": shop, "upsell_block_id": str(block.id), "placement": block.placement.value},
    )
    return block


_NULLABLE_FIELDS = frozenset({"collection_handle", "product_handles", "properties"})


async def update_block(session: AsyncSession, shop: str, block_id: uuid.UUID, payload: UpsellBlockUpdate) -> UpsellBlock:
    block = await get_block_for_shop(session, shop, block_id)
    changes = payload.model_dump(exclude_unset=True)
    for key in [key for key, value in changes.items() if value is None and key not in _NULLABLE_FIELDS]:
        # Clearing a required column is not an update the UI can express.
        changes.pop(key)
    for key, value in changes.items():
        setattr(block, key, value)
    if block.active and (changes.get("active") is True or "placement" in changes):
        await _deactivate_siblings(session, block)
    session.add(block)
    await session.commit()
    await session.refresh(block)
    logger.info("upsell_block_updated", extra={"shop": shop, "upsell_block_id": str(block.id), "fields": sorted(changes)})
    return block


async def delete_block(session: AsyncSession, shop: str, block_id: uuid.UUID) -> None:
    block = await get_block_for_shop(session, shop, block_id)
    await session.delete(block)
    await session.commit()
    logger.info("upsell_block_deleted", extra={"shop": shop, "upsell_block_id": str(block_id)})


async def delete_all_blocks(session: AsyncSession, shop: str) -> int:
    result = await session.execute(delete(UpsellBlock).where(UpsellBlock.shop == shop))
    await session.commit()
    return int(result.rowcount or 0)


# Owner view across every installed shop.


@dataclass
class BlockUsage:
    block: UpsellBlock
    analytics_count: int


@dataclass
class OwnerOverview:
    total_upsells: int = 0
    active_upsells: int = 0
    shops: dict[str, list[BlockUsage]] = field(default_factory=dict)

    @property
    def unique_shops(self) -> int:
        return len(self.shops)


async def owner_overview(session: AsyncSession) -> OwnerOverview:
    """Every block, newest first, grouped by shop with the number of analytics rows pointing at it."""
    analytics_count = func.count(UpsellAnalytics.id)
    stmt = (
        select(UpsellBlock, analytics_count)
        .outerjoin(UpsellAnalytics, UpsellAnalytics.upsell_block_id == UpsellBlock.id)
        .group_by(UpsellBlock.id)
        .order_by(UpsellBlock.created_at.desc(), UpsellBlock.id.desc())
    )
    overview = OwnerOverview()
    for block, count in (await session.execute(stmt)).all():
        overview.total_upsells += 1
        if block.active:
            overview.active_upsells += 1
        overview.shops.setdefault(block.shop, []).append(BlockUsage(block=block, analytics_count=int(count or 0)))
    return overview
