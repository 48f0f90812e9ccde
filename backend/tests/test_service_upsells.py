import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core import metrics
from app.core.config import settings
from app.db.base import Base
from app.models.upsell import UpsellBlock, UpsellPlacement
from app.schemas.upsell import UpsellBlockCreate, UpsellBlockUpdate
from app.services import upsells as upsells_service


def _block(**overrides) -> UpsellBlock:
    values = {
        "id": uuid.uuid4(),
        "shop": "svc.myshopify.com",
        "name": "Svc",
        "placement": UpsellPlacement.checkout,
        "title": "Svc title",
        "show_count": 3,
        "auto_slide": False,
        "slide_duration": 5,
    }
    values.update(overrides)
    return UpsellBlock(**values)


def test_split_handles_trims_and_drops_empties() -> None:
    assert upsells_service.split_handles("a, b ,,c") == ["a", "b", "c"]
    assert upsells_service.split_handles("") == []
    assert upsells_service.split_handles(None) == []


def test_default_configuration_is_shared_value() -> None:
    first = upsells_service.default_configuration()
    second = upsells_service.default_configuration()
    assert first == second
    assert first.is_default
    assert first.product_handles == ()
    with pytest.raises(Exception):
        first.title = "changed"  # type: ignore[misc]


def test_legacy_handles_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "upsell_fallback_product_handles", ["fallback-1"])
    block = _block(collection_handle="summer", product_handles="legacy-1,legacy-2")
    assert upsells_service.resolve_product_handles(block) == ["legacy-1", "legacy-2"]


def test_configured_fallback_only_applies_to_collection_blocks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "upsell_fallback_product_handles", [" fallback-1 ", ""])
    assert upsells_service.resolve_product_handles(_block(collection_handle="summer")) == ["fallback-1"]
    assert upsells_service.resolve_product_handles(_block(collection_handle=None)) == []


def test_custom_strategy_chain_runs_in_order() -> None:
    calls: list[str] = []

    def nothing(block):
        calls.append("nothing")
        return None

    def something(block):
        calls.append("something")
        return ["x"]

    def never(block):
        calls.append("never")
        return ["y"]

    assert upsells_service.resolve_product_handles(_block(), (nothing, something, never)) == ["x"]
    assert calls == ["nothing", "something"]


def test_resolve_swallows_storage_errors() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def run_flow():
        # No tables created: the lookup fails inside the database.
        async with SessionLocal() as session:
            configuration = await upsells_service.resolve(session, "svc.myshopify.com", "checkout")
        assert configuration == upsells_service.default_configuration()
        assert metrics.snapshot().get("upsells_default_served") == 1

    asyncio.run(run_flow())


def test_resolve_counts_served_blocks() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def run_flow():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionLocal() as session:
            session.add(_block())
            await session.commit()
            configuration = await upsells_service.resolve(session, "svc.myshopify.com", "checkout")
            assert not configuration.is_default
            assert configuration.title == "Svc title"
            fallback = await upsells_service.resolve(session, "svc.myshopify.com", "cart_page")
            assert fallback.is_default
        counters = metrics.snapshot()
        assert counters["upsells_resolved"] == 1
        assert counters["upsells_default_served"] == 1

    asyncio.run(run_flow())


def test_create_and_update_keep_one_active_block_per_placement() -> None:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def run_flow():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with SessionLocal() as session:
            first = await upsells_service.create_block(session, "svc.myshopify.com", UpsellBlockCreate(title="First"))
            assert first.name.startswith("Checkout Upsell - ")
            second = await upsells_service.create_block(
                session, "svc.myshopify.com", UpsellBlockCreate(name="Second", productHandles=["a", " b "])
            )
            assert second.product_handles == "a,b"
            await session.refresh(first)
            assert first.active is False
            assert second.active is True

            await upsells_service.update_block(session, "svc.myshopify.com", first.id, UpsellBlockUpdate(active=True))
            await session.refresh(second)
            assert second.active is False

            updated = await upsells_service.update_block(
                session, "svc.myshopify.com", first.id, UpsellBlockUpdate(title=None, collectionHandle=None)
            )
            assert updated.title == "First"
            assert updated.collection_handle is None

            removed = await upsells_service.delete_all_blocks(session, "svc.myshopify.com")
            assert removed == 2

    asyncio.run(run_flow())
