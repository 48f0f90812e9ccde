from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import verify_webhook_hmac
from app.models.webhook import ShopifyWebhookEvent
from app.services import analytics as analytics_service
from app.services import upsells as upsells_service

logger = logging.getLogger(__name__)

TOPIC_APP_UNINSTALLED = "app/uninstalled"
TOPIC_SHOP_REDACT = "shop/redact"
TOPIC_CUSTOMERS_DATA_REQUEST = "customers/data_request"
TOPIC_CUSTOMERS_REDACT = "customers/redact"

CUSTOMER_DATA_STATEMENT = (
    "This app stores no customer personal data. Upsell analytics hold an anonymised "
    "customer hash that cannot be mapped back to a Shopify customer."
)


class WebhookVerificationError(ValueError):
    """HMAC missing or wrong; the request did not come from Shopify."""


class WebhookTopicMismatchError(ValueError):
    """The X-Shopify-Topic header does not match the endpoint it was posted to."""


def verify_request(raw_body: bytes, hmac_header: str | None) -> None:
    secret = settings.shopify_api_secret
    if not secret or not hmac_header or not verify_webhook_hmac(raw_body, hmac_header, secret):
        raise WebhookVerificationError("Invalid webhook signature")


def check_topic(expected: str, topic_header: str | None) -> None:
    topic = (topic_header or "").strip().lower()
    # Some privacy webhooks arrive without a topic header.
    if topic and topic != expected:
        raise WebhookTopicMismatchError(f"Expected topic {expected}")


def decode_body(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return {}
    return payload if isinstance(payload, dict) else {}


def resolve_shop(shop_header: str | None, payload: dict[str, Any]) -> str | None:
    shop = (shop_header or "").strip().lower() or str(payload.get("shop_domain") or "").strip().lower()
    return shop or None


async def _existing_delivery(session: AsyncSession, webhook_id: str) -> ShopifyWebhookEvent:
    result = await session.execute(select(ShopifyWebhookEvent).where(ShopifyWebhookEvent.webhook_id == webhook_id))
    return result.scalar_one()


async def register_delivery(
    session: AsyncSession, *, webhook_id: str, topic: str, shop: str | None
) -> tuple[ShopifyWebhookEvent, bool]:
    """Record one delivery; returns (record, is_new). Redeliveries bump `attempts`."""
    now = datetime.now(timezone.utc)
    record = ShopifyWebhookEvent(webhook_id=webhook_id, topic=topic, shop=shop, attempts=1, last_attempt_at=now)
    session.add(record)
    try:
        await session.commit()
        await session.refresh(record)
        return record, True
    except IntegrityError:
        await session.rollback()

    existing = await _existing_delivery(session, webhook_id)
    existing.attempts = int(existing.attempts or 0) + 1
    existing.last_attempt_at = now
    session.add(existing)
    await session.commit()
    await session.refresh(existing)
    return existing, False


async def _mark_processed(session: AsyncSession, record: ShopifyWebhookEvent | None, error: str | None = None) -> None:
    if record is None:
        return
    if error is None:
        record.processed_at = datetime.now(timezone.utc)
    record.last_error = error
    session.add(record)
    await session.commit()


async def _on_app_uninstalled(session: AsyncSession, shop: str, payload: dict[str, Any]) -> dict[str, Any]:
    removed = await upsells_service.delete_all_blocks(session, shop)
    logger.info("shop_uninstalled", extra={"shop": shop, "blocks_deleted": removed})
    return {"blocksDeleted": removed}


async def _on_shop_redact(session: AsyncSession, shop: str, payload: dict[str, Any]) -> dict[str, Any]:
    blocks = await upsells_service.delete_all_blocks(session, shop)
    events = await analytics_service.delete_shop_analytics(session, shop)
    logger.info("shop_redacted", extra={"shop": shop, "blocks_deleted": blocks, "analytics_deleted": events})
    return {"blocksDeleted": blocks, "analyticsDeleted": events}


async def _on_customers_data_request(session: AsyncSession, shop: str, payload: dict[str, Any]) -> dict[str, Any]:
    customer = payload.get("customer") or {}
    logger.info(
        "customer_data_requested",
        extra={"shop": shop, "customer_id": customer.get("id") if isinstance(customer, dict) else None},
    )
    return {"statement": CUSTOMER_DATA_STATEMENT}


async def _on_customers_redact(session: AsyncSession, shop: str, payload: dict[str, Any]) -> dict[str, Any]:
    customer = payload.get("customer") or {}
    logger.info(
        "customer_redact_acknowledged",
        extra={"shop": shop, "customer_id": customer.get("id") if isinstance(customer, dict) else None},
    )
    return {}


WebhookHandler = Callable[[AsyncSession, str, dict[str, Any]], Awaitable[dict[str, Any]]]

HANDLERS: dict[str, WebhookHandler] = {
    TOPIC_APP_UNINSTALLED: _on_app_uninstalled,
    TOPIC_SHOP_REDACT: _on_shop_redact,
    TOPIC_CUSTOMERS_DATA_REQUEST: _on_customers_data_request,
    TOPIC_CUSTOMERS_REDACT: _on_customers_redact,
}


async def handle_webhook(
    session: AsyncSession,
    *,
    topic: str,
    raw_body: bytes,
    hmac_header: str | None,
    topic_header: str | None,
    shop_header: str | None,
    webhook_id: str | None,
) -> dict[str, Any]:
    verify_request(raw_body, hmac_header)
    check_topic(topic, topic_header)
    payload = decode_body(raw_body)
    shop = resolve_shop(shop_header, payload)
    if not shop:
        logger.warning("webhook_missing_shop", extra={"topic": topic, "webhook_id": webhook_id})
        return {"received": True, "topic": topic}

    record: ShopifyWebhookEvent | None = None
    if webhook_id:
        record, is_new = await register_delivery(session, webhook_id=webhook_id, topic=topic, shop=shop)
        if not is_new and record.processed_at is not None:
            logger.info("webhook_duplicate", extra={"shop": shop, "topic": topic, "webhook_id": webhook_id})
            return {"received": True, "topic": topic, "duplicate": True}

    try:
        result = await HANDLERS[topic](session, shop, payload)
    except Exception as exc:
        await session.rollback()
        await _mark_processed(session, record, error=str(exc))
        raise
    await _mark_processed(session, record)
    return {"received": True, "topic": topic, **result}
