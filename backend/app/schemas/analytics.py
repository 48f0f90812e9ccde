from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field, field_validator

from app.schemas.base import CamelModel


class AnalyticsEventPayload(CamelModel):
    """Body posted by the checkout extension. Presence checks happen in the service."""

    shop: str | None = None
    upsell_block_id: str | None = None
    product_id: str | None = None
    variant_id: str | None = None
    product_name: str | None = None
    variant_title: str | None = None
    price: Decimal | None = None
    placement: str | None = None
    customer_hash: str | None = None
    session_id: str | None = None
    added_to_cart: bool = False
    update_existing: str | None = None

    @field_validator(
        "shop",
        "upsell_block_id",
        "product_id",
        "variant_id",
        "product_name",
        "variant_title",
        "placement",
        "customer_hash",
        "session_id",
        "update_existing",
        mode="before",
    )
    @classmethod
    def coerce_scalar_to_text(cls, value: object) -> object:
        # Numeric Shopify ids show up from older extension builds.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("added_to_cart", mode="before")
    @classmethod
    def none_means_false(cls, value: object) -> object:
        return False if value is None else value


class AnalyticsRecordResponse(CamelModel):
    success: bool = True
    id: UUID
    updated: bool | None = None


class AnalyticsEventRead(CamelModel):
    id: UUID
    product_id: str
    product_name: str
    variant_title: str | None = None
    price: float
    placement: str
    added_to_cart: bool
    upsell_block_id: UUID | None = None
    upsell_block_name: str
    created_at: datetime


class SummaryTotals(CamelModel):
    total_clicks: int = 0
    total_value: float = 0.0


class ConversionCounts(CamelModel):
    clicked: int = 0
    converted: int = 0


class TopProductRead(CamelModel):
    product_id: str
    product_name: str
    count: int
    total: float


class DailyStatRead(CamelModel):
    day: date = Field(alias="date")
    label: str
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0


class PlacementShareRead(CamelModel):
    placement: str
    name: str
    value: int
    color: str


class AnalyticsReport(CamelModel):
    analytics: list[AnalyticsEventRead] = Field(default_factory=list)
    summary: SummaryTotals = Field(default_factory=SummaryTotals)
    conversions: ConversionCounts = Field(default_factory=ConversionCounts)
    top_products: list[TopProductRead] = Field(default_factory=list)


class AnalyticsDashboard(AnalyticsReport):
    range_from: datetime | None = None
    range_to: datetime | None = None
    placement: str = "all"
    chart_data: list[DailyStatRead] = Field(default_factory=list)
    placement_breakdown: list[PlacementShareRead] = Field(default_factory=list)
