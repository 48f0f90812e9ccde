from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import metrics
from app.models.upsell import BlockRefKind, UpsellAnalytics, UpsellBlock, UpsellPlacement
from app.schemas.analytics import AnalyticsEventPayload

logger = logging.getLogger(__name__)

REQUIRED_EVENT_FIELDS = ("shop", "product_id", "variant_id", "product_name", "price", "placement")
TOP_PRODUCTS_LIMIT = 10
DAILY_SERIES_DAYS = 7
UNKNOWN_BLOCK_NAME = "Unknown"

_CENT = Decimal("0.01")

PLACEMENT_LABELS = {
    UpsellPlacement.product_page.value: "Product Page",
    UpsellPlacement.product_description.value: "Below Description",
    UpsellPlacement.cart_page.value: "Cart Page",
    UpsellPlacement.cart_drawer.value: "Cart Drawer",
    UpsellPlacement.checkout.value: "Checkout",
}
PLACEMENT_COLORS = {
    UpsellPlacement.product_page.value: "#47C1BF",
    UpsellPlacement.product_description.value: "#9C6ADE",
    UpsellPlacement.cart_page.value: "#00A0B0",
    UpsellPlacement.cart_drawer.value: "#F49342",
    UpsellPlacement.checkout.value: "#5C6AC4",
}
_OTHER_PLACEMENT_COLOR = "#919EAB"


class EventValidationError(ValueError):
    """The caller sent an event or filter we cannot store or apply."""


class AnalyticsQueryError(RuntimeError):
    """Reporting queries failed; callers must show an error rather than zeros."""


@dataclass(frozen=True)
class BlockReference:
    kind: BlockRefKind
    block_id: uuid.UUID | None = None


@dataclass(frozen=True)
class RecordResult:
    id: uuid.UUID
    updated: bool = False


@dataclass(frozen=True)
class AnalyticsFilters:
    shop: str
    start: datetime | None = None
    end: datetime | None = None
    placement: str | None = None


@dataclass(frozen=True)
class EventRow:
    id: uuid.UUID
    product_id: str
    product_name: str
    variant_title: str | None
    price: Decimal
    placement: str
    added_to_cart: bool
    upsell_block_id: uuid.UUID | None
    upsell_block_name: str
    created_at: datetime


@dataclass(frozen=True)
class TopProduct:
    product_id: str
    product_name: str
    count: int
    total: Decimal


@dataclass
class DailyStat:
    day: date
    label: str
    clicks: int = 0
    conversions: int = 0
    revenue: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class PlacementShare:
    placement: str
    name: str
    value: int
    color: str


@dataclass
class AnalyticsSummary:
    total_clicks: int = 0
    total_value: Decimal = Decimal("0.00")
    clicked: int = 0
    converted: int = 0
    top_products: list[TopProduct] = field(default_factory=list)
    daily: list[DailyStat] = field(default_factory=list)
    placements: list[PlacementShare] = field(default_factory=list)
    events: list[EventRow] = field(default_factory=list)


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def _parse_uuid(raw: str | None) -> uuid.UUID | None:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def parse_block_reference(raw: str | None) -> BlockReference:
    if raw is None or not str(raw).strip():
        return BlockReference(kind=BlockRefKind.absent)
    block_id = _parse_uuid(str(raw))
    if block_id is None:
        return BlockReference(kind=BlockRefKind.unresolvable)
    return BlockReference(kind=BlockRefKind.resolved, block_id=block_id)


def missing_event_fields(payload: AnalyticsEventPayload) -> list[str]:
    missing: list[str] = []
    for name in REQUIRED_EVENT_FIELDS:
        value = getattr(payload, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def _validated_price(raw: Decimal | None) -> Decimal:
    try:
        if raw is None or not raw.is_finite() or raw < 0:
            raise EventValidationError("Invalid price")
        return raw.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise EventValidationError("Invalid price") from exc


def validate_event(payload: AnalyticsEventPayload) -> Decimal:
    """Raise EventValidationError when the event cannot be stored; return the price."""
    if missing_event_fields(payload):
        raise EventValidationError("Missing required fields")
    return _validated_price(payload.price)


def _variant_title(payload: AnalyticsEventPayload) -> str | None:
    title = (payload.variant_title or "").strip()
    if not title or title == (payload.product_name or "").strip():
        return None
    return title


def _new_event_row(payload: AnalyticsEventPayload, *, price: Decimal, added_to_cart: bool) -> UpsellAnalytics:
    reference = parse_block_reference(payload.upsell_block_id)
    return UpsellAnalytics(
        id=uuid.uuid4(),
        shop=(payload.shop or "").strip(),
        upsell_block_ref=reference.kind,
        upsell_block_id=reference.block_id,
        product_id=(payload.product_id or "").strip(),
        variant_id=(payload.variant_id or "").strip(),
        product_name=(payload.product_name or "").strip(),
        variant_title=_variant_title(payload),
        price=price,
        placement=(payload.placement or "").strip(),
        customer_hash=(payload.customer_hash or "").strip() or None,
        session_id=(payload.session_id or "").strip() or None,
        added_to_cart=added_to_cart,
    )


async def _insert_event(session: AsyncSession, row: UpsellAnalytics) -> UpsellAnalytics:
    session.add(row)
    await session.commit()
    return row


async def record_click(session: AsyncSession, payload: AnalyticsEventPayload) -> RecordResult:
    price = validate_event(payload)
    row = await _insert_event(session, _new_event_row(payload, price=price, added_to_cart=bool(payload.added_to_cart)))
    if row.added_to_cart:
        metrics.increment(metrics.ANALYTICS_CLICKS, metrics.ANALYTICS_CONVERSIONS)
    else:
        metrics.increment(metrics.ANALYTICS_CLICKS)
    logger.info(
        "analytics_tracked",
        extra={"shop": row.shop, "analytics_id": str(row.id), "placement": row.placement, "added_to_cart": row.added_to_cart},
    )
    return RecordResult(id=row.id)


async def _mark_converted(session: AsyncSession, *, shop: str, event_id: uuid.UUID) -> bool:
    try:
        result = await session.execute(
            update(UpsellAnalytics)
            .where(UpsellAnalytics.id == event_id, UpsellAnalytics.shop == shop)
            .values(added_to_cart=True)
        )
        if result.rowcount:
            await session.commit()
            return True
        await session.rollback()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.warning("analytics_conversion_update_failed", extra={"shop": shop, "analytics_id": str(event_id), "error": str(exc)})
    return False


async def record_conversion(session: AsyncSession, payload: AnalyticsEventPayload) -> RecordResult:
    """
    Flip a prior click row to converted, addressed by the id the client kept.

    When the id is unknown or malformed a new converted row is inserted instead and the
    original click row stays as it was, so one user action can be counted twice.
    """
    price = validate_event(payload)
    shop = (payload.shop or "").strip()
    event_id = _parse_uuid(payload.update_existing)
    if event_id is not None and await _mark_converted(session, shop=shop, event_id=event_id):
        metrics.increment(metrics.ANALYTICS_CONVERSIONS)
        logger.info("analytics_conversion_updated", extra={"shop": shop, "analytics_id": str(event_id)})
        return RecordResult(id=event_id, updated=True)

    row = await _insert_event(session, _new_event_row(payload, price=price, added_to_cart=True))
    metrics.increment(metrics.ANALYTICS_CONVERSIONS, metrics.ANALYTICS_CONVERSION_FALLBACKS)
    logger.info(
        "analytics_conversion_fallback_insert",
        extra={"shop": shop, "analytics_id": str(row.id), "requested_id": payload.update_existing},
    )
    return RecordResult(id=row.id)


async def record_event(session: AsyncSession, payload: AnalyticsEventPayload) -> RecordResult:
    if payload.update_existing and payload.added_to_cart:
        return await record_conversion(session, payload)
    return await record_click(session, payload)


def parse_date_bound(raw: str | None, *, end_of_day: bool = False) -> datetime | None:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        if len(value) == 10:
            day = date.fromisoformat(value)
            if end_of_day:
                return datetime.combine(day, time.max, tzinfo=timezone.utc)
            return datetime.combine(day, time.min, tzinfo=timezone.utc)
        return _as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError as exc:
        raise EventValidationError(f"Invalid date: {value}") from exc


def build_filters(
    shop: str,
    start_raw: str | None = None,
    end_raw: str | None = None,
    placement_raw: str | None = None,
    *,
    default_window_days: int | None = None,
    now: datetime | None = None,
) -> AnalyticsFilters:
    start = parse_date_bound(start_raw)
    end = parse_date_bound(end_raw, end_of_day=True)
    if start is None or end is None:
        # A half-open range is ignored, same as no range at all.
        start, end = None, None
        if default_window_days:
            start = (now or datetime.now(timezone.utc)) - timedelta(days=default_window_days)
    placement = (placement_raw or "").strip()
    if placement.lower() == "all":
        placement = ""
    return AnalyticsFilters(shop=shop.strip(), start=start, end=end, placement=placement or None)


def _conditions(filters: AnalyticsFilters, *, with_range: bool = True) -> list[Any]:
    conditions: list[Any] = [UpsellAnalytics.shop == filters.shop]
    if filters.placement:
        conditions.append(UpsellAnalytics.placement == filters.placement)
    if with_range and filters.start is not None:
        conditions.append(UpsellAnalytics.created_at >= filters.start)
    if with_range and filters.end is not None:
        conditions.append(UpsellAnalytics.created_at <= filters.end)
    return conditions


def _day_label(day: date) -> str:
    return f"{day:%b} {day.day}"


def daily_series(
    rows: Iterable[tuple[datetime, bool, Any]],
    *,
    today: date,
    days: int = DAILY_SERIES_DAYS,
) -> list[DailyStat]:
    """Bucket rows per UTC day for the `days` days ending today, oldest first, zeros included."""
    buckets = {
        today - timedelta(days=offset): DailyStat(day=today - timedelta(days=offset), label=_day_label(today - timedelta(days=offset)))
        for offset in range(days - 1, -1, -1)
    }
    for created_at, added_to_cart, price in rows:
        stat = buckets.get(_as_utc(created_at).date())
        if stat is None:
            continue
        stat.clicks += 1
        if added_to_cart:
            stat.conversions += 1
            stat.revenue = _money(stat.revenue + _money(price))
    return sorted(buckets.values(), key=lambda stat: stat.day)


async def _load_events(session: AsyncSession, filters: AnalyticsFilters, limit: int) -> list[EventRow]:
    result = await session.execute(
        select(UpsellAnalytics, UpsellBlock.name)
        .outerjoin(UpsellBlock, UpsellBlock.id == UpsellAnalytics.upsell_block_id)
        .where(*_conditions(filters))
        .order_by(UpsellAnalytics.created_at.desc(), UpsellAnalytics.id.desc())
        .limit(max(0, limit))
    )
    events: list[EventRow] = []
    for row, block_name in result.all():
        events.append(
            EventRow(
                id=row.id,
                product_id=row.product_id,
                product_name=row.product_name,
                variant_title=row.variant_title,
                price=_money(row.price),
                placement=row.placement,
                added_to_cart=bool(row.added_to_cart),
                upsell_block_id=row.upsell_block_id,
                upsell_block_name=block_name or UNKNOWN_BLOCK_NAME,
                created_at=_as_utc(row.created_at),
            )
        )
    return events


async def _load_totals(session: AsyncSession, filters: AnalyticsFilters) -> tuple[int, Decimal]:
    row = (
        await session.execute(
            select(func.count(UpsellAnalytics.id), func.coalesce(func.sum(UpsellAnalytics.price), 0)).where(
                *_conditions(filters)
            )
        )
    ).one()
    return int(row[0] or 0), _money(row[1])


async def _load_conversion_counts(session: AsyncSession, filters: AnalyticsFilters) -> tuple[int, int]:
    result = await session.execute(
        select(UpsellAnalytics.added_to_cart, func.count(UpsellAnalytics.id))
        .where(*_conditions(filters))
        .group_by(UpsellAnalytics.added_to_cart)
    )
    counts = {bool(flag): int(count or 0) for flag, count in result.all()}
    return counts.get(False, 0), counts.get(True, 0)


async def _load_top_products(session: AsyncSession, filters: AnalyticsFilters) -> list[TopProduct]:
    clicks = func.count(UpsellAnalytics.id).label("clicks")
    result = await session.execute(
        select(
            UpsellAnalytics.product_id,
            UpsellAnalytics.product_name,
            clicks,
            func.coalesce(func.sum(UpsellAnalytics.price), 0),
        )
        .where(*_conditions(filters))
        .group_by(UpsellAnalytics.product_id, UpsellAnalytics.product_name)
        .order_by(clicks.desc(), UpsellAnalytics.product_id.asc(), UpsellAnalytics.product_name.asc())
        .limit(TOP_PRODUCTS_LIMIT)
    )
    return [
        TopProduct(product_id=product_id, product_name=product_name, count=int(count or 0), total=_money(total))
        for product_id, product_name, count, total in result.all()
    ]


async def _load_daily(session: AsyncSession, filters: AnalyticsFilters, *, today: date) -> list[DailyStat]:
    window_start = datetime.combine(today - timedelta(days=DAILY_SERIES_DAYS - 1), time.min, tzinfo=timezone.utc)
    result = await session.execute(
        select(UpsellAnalytics.created_at, UpsellAnalytics.added_to_cart, UpsellAnalytics.price).where(
            *_conditions(filters, with_range=False),
            UpsellAnalytics.created_at >= window_start,
        )
    )
    return daily_series(result.all(), today=today)


async def _load_placements(session: AsyncSession, filters: AnalyticsFilters) -> list[PlacementShare]:
    total = func.count(UpsellAnalytics.id).label("total")
    result = await session.execute(
        select(UpsellAnalytics.placement, total)
        .where(*_conditions(filters))
        .group_by(UpsellAnalytics.placement)
        .order_by(total.desc(), UpsellAnalytics.placement.asc())
    )
    return [
        PlacementShare(
            placement=placement,
            name=PLACEMENT_LABELS.get(placement, placement.replace("_", " ").title()),
            value=int(count or 0),
            color=PLACEMENT_COLORS.get(placement, _OTHER_PLACEMENT_COLOR),
        )
        for placement, count in result.all()
    ]


async def summarize(
    session: AsyncSession,
    filters: AnalyticsFilters,
    *,
    raw_limit: int = 500,
    now: datetime | None = None,
) -> AnalyticsSummary:
    today = _as_utc(now or datetime.now(timezone.utc)).date()
    try:
        total_clicks, total_value = await _load_totals(session, filters)
        clicked, converted = await _load_conversion_counts(session, filters)
        return AnalyticsSummary(
            total_clicks=total_clicks,
            total_value=total_value,
            clicked=clicked,
            converted=converted,
            top_products=await _load_top_products(session, filters),
            daily=await _load_daily(session, filters, today=today),
            placements=await _load_placements(session, filters),
            events=await _load_events(session, filters, raw_limit),
        )
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("analytics_summary_failed", extra={"shop": filters.shop})
        raise AnalyticsQueryError("Failed to load analytics data") from exc


async def delete_shop_analytics(session: AsyncSession, shop: str) -> int:
    result = await session.execute(delete(UpsellAnalytics).where(UpsellAnalytics.shop == shop))
    await session.commit()
    return int(result.rowcount or 0)
