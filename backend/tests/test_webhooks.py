import asyncio
import json
import uuid
from decimal import Decimal
from typing import Dict

from fastapi.testclient import TestClient
from sqlalchemy import func, select

from app.core.config import settings
from app.core.security import webhook_hmac_digest
from app.models.upsell import BlockRefKind, UpsellAnalytics, UpsellBlock
from app.models.webhook import ShopifyWebhookEvent

SHOP = "leaving.myshopify.com"


def signed_headers(body: bytes, topic: str, webhook_id: str | None = None, shop: str = SHOP) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-Shopify-Hmac-Sha256": webhook_hmac_digest(body, settings.shopify_api_secret),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
    }
    if webhook_id:
        headers["X-Shopify-Webhook-Id"] = webhook_id
    return headers


def seed_shop_data(session_factory, shop: str = SHOP) -> None:
    async def seed():
        async with session_factory() as session:
            session.add(UpsellBlock(id=uuid.uuid4(), shop=shop, name="Block"))
            session.add(
                UpsellAnalytics(
                    id=uuid.uuid4(),
                    shop=shop,
                    upsell_block_ref=BlockRefKind.absent,
                    product_id="p1",
                    variant_id="v1",
                    product_name="Mug",
                    price=Decimal("10.00"),
                    placement="checkout",
                )
            )
            await session.commit()

    asyncio.run(seed())


def count(session_factory, model, shop: str = SHOP) -> int:
    async def run():
        async with session_factory() as session:
            stmt = select(func.count()).select_from(model).where(model.shop == shop)
            return int((await session.execute(stmt)).scalar_one())

    return asyncio.run(run())


def test_empty_body_ping_is_acknowledged(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    res = client.post("/api/webhooks/app-uninstalled")
    assert res.status_code == 200
    assert res.json() == {"received": True}


def test_bad_signature_is_rejected(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    seed_shop_data(test_app["session_factory"])
    body = json.dumps({"domain": SHOP}).encode()
    headers = signed_headers(body, "app/uninstalled")
    headers["X-Shopify-Hmac-Sha256"] = "bm9wZQ=="

    res = client.post("/api/webhooks/app-uninstalled", content=body, headers=headers)
    assert res.status_code == 401
    assert count(test_app["session_factory"], UpsellBlock) == 1


def test_topic_mismatch_is_rejected(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    body = json.dumps({"shop_domain": SHOP}).encode()
    res = client.post("/api/webhooks/shop-redact", content=body, headers=signed_headers(body, "app/uninstalled"))
    assert res.status_code == 400


def test_missing_topic_header_is_accepted(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    body = json.dumps({"shop_domain": SHOP, "customer": {"id": 7}}).encode()
    headers = signed_headers(body, "customers/redact")
    del headers["X-Shopify-Topic"]

    res = client.post("/api/webhooks/customers-redact", content=body, headers=headers)
    assert res.status_code == 200, res.text


def test_app_uninstalled_removes_blocks_only(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    seed_shop_data(session_factory)
    seed_shop_data(session_factory, shop="staying.myshopify.com")

    body = json.dumps({"domain": SHOP}).encode()
    res = client.post("/api/webhooks/app-uninstalled", content=body, headers=signed_headers(body, "app/uninstalled"))
    assert res.status_code == 200, res.text
    assert res.json()["blocksDeleted"] == 1
    assert count(session_factory, UpsellBlock) == 0
    assert count(session_factory, UpsellAnalytics) == 1
    assert count(session_factory, UpsellBlock, "staying.myshopify.com") == 1


def test_shop_redact_removes_everything(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    seed_shop_data(session_factory)

    body = json.dumps({"shop_id": 1, "shop_domain": SHOP}).encode()
    res = client.post("/api/webhooks/shop-redact", content=body, headers=signed_headers(body, "shop/redact"))
    assert res.status_code == 200, res.text
    assert count(session_factory, UpsellBlock) == 0
    assert count(session_factory, UpsellAnalytics) == 0


def test_customer_privacy_webhooks(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    body = json.dumps({"shop_domain": SHOP, "customer": {"id": 42}}).encode()

    data_request = client.post(
        "/api/webhooks/customers-data-request", content=body, headers=signed_headers(body, "customers/data_request")
    )
    assert data_request.status_code == 200
    assert "statement" in data_request.json()

    redact = client.post("/api/webhooks/customers-redact", content=body, headers=signed_headers(body, "customers/redact"))
    assert redact.status_code == 200
    assert redact.json()["received"] is True


def test_redelivery_is_not_processed_twice(test_app: Dict[str, object]) -> None:
    client: TestClient = test_app["client"]  # type: ignore[assignment]
    session_factory = test_app["session_factory"]
    seed_shop_data(session_factory)
    body = json.dumps({"domain": SHOP}).encode()
    headers = signed_headers(body, "app/uninstalled", webhook_id="wh-1")

    first = client.post("/api/webhooks/app-uninstalled", content=body, headers=headers)
    assert first.status_code == 200
    seed_shop_data(session_factory)
    second = client.post("/api/webhooks/app-uninstalled", content=body, headers=headers)
    assert second.status_code == 200
    assert second.json().get("duplicate") is True
    assert count(session_factory, UpsellBlock) == 1

    async def load_record():
        async with session_factory() as session:
            result = await session.execute(select(ShopifyWebhookEvent).where(ShopifyWebhookEvent.webhook_id == "wh-1"))
            return result.scalar_one()

    record = asyncio.run(load_record())
    assert record.attempts == 2
    assert record.processed_at is not None
