from app.db.base import Base  # noqa: F401
from app.models.upsell import BlockRefKind, UpsellAnalytics, UpsellBlock, UpsellPlacement  # noqa: F401
from app.models.webhook import ShopifyWebhookEvent  # noqa: F401

__all__ = [
    "Base",
    "BlockRefKind",
    "UpsellAnalytics",
    "UpsellBlock",
    "UpsellPlacement",
    "ShopifyWebhookEvent",
]
