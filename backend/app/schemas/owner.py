from __future__ import annotations

from pydantic import Field

from app.schemas.base import CamelModel
from app.schemas.upsell import UpsellBlockRead


class OwnerBlockRead(UpsellBlockRead):
    analytics_count: int = 0


class OwnerShopGroup(CamelModel):
    shop: str
    blocks: list[OwnerBlockRead] = Field(default_factory=list)


class OwnerStats(CamelModel):
    total_upsells: int
    active_upsells: int
    unique_shops: int


class OwnerDashboard(CamelModel):
    stats: OwnerStats
    shops: list[OwnerShopGroup]
