import asyncio
import json
import uuid
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app import cli
from app.db.base import Base
from app.models.upsell import BlockRefKind, UpsellAnalytics, UpsellBlock, UpsellPlacement


def _session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return SessionLocal


def _seed(session_factory, shop: str) -> uuid.UUID:
    async def seed():
        async with session_factory() as session:
            block = UpsellBlock(id=uuid.uuid4(), shop=shop, name="Block", placement=UpsellPlacement.cart_page)
            session.add(block)
            session.add(
                UpsellAnalytics(
                    id=uuid.uuid4(),
                    shop=shop,
                    upsell_block_ref=BlockRefKind.resolved,
                    upsell_block_id=block.id,
                    product_id="p1",
                    variant_id="v1",
                    product_name="Mug",
                    price=Decimal("12.50"),
                    placement="cart_page",
                    added_to_cart=True,
                )
            )
            await session.commit()
            return block.id

    return asyncio.run(seed())


def _counts(session_factory, shop: str | None = None) -> tuple[int, int]:
    async def run():
        async with session_factory() as session:
            blocks = select(func.count()).select_from(UpsellBlock)
            events = select(func.count()).select_from(UpsellAnalytics)
            if shop:
                blocks = blocks.where(UpsellBlock.shop == shop)
                events = events.where(UpsellAnalytics.shop == shop)
            return int((await session.execute(blocks)).scalar_one()), int((await session.execute(events)).scalar_one())

    return asyncio.run(run())


def test_export_then_import_restores_rows(tmp_path: Path) -> None:
    source = _session_factory()
    block_id = _seed(source, "export.myshopify.com")
    output = tmp_path / "export.json"

    asyncio.run(cli.export_data(output, session_factory=source))
    data = json.loads(output.read_text(encoding="utf-8"))
    assert [block["id"] for block in data["upsell_blocks"]] == [str(block_id)]
    assert data["upsell_blocks"][0]["placement"] == "cart_page"
    assert data["upsell_analytics"][0]["price"] == "12.50"
    assert data["upsell_analytics"][0]["upsell_block_ref"] == "resolved"

    target = _session_factory()
    asyncio.run(cli.import_data(output, session_factory=target))
    assert _counts(target) == (1, 1)

    # Importing the same file again updates rows in place.
    asyncio.run(cli.import_data(output, session_factory=target))
    assert _counts(target) == (1, 1)


def test_purge_shop_only_touches_that_shop() -> None:
    session_factory = _session_factory()
    _seed(session_factory, "gone.myshopify.com")
    _seed(session_factory, "kept.myshopify.com")

    asyncio.run(cli.purge_shop(" Gone.myshopify.com ", session_factory=session_factory))

    assert _counts(session_factory, "gone.myshopify.com") == (0, 0)
    assert _counts(session_factory, "kept.myshopify.com") == (1, 1)


def test_json_paths_must_be_plain_file_names(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit):
        cli._resolve_json_path("../escape.json", must_exist=False)
    with pytest.raises(SystemExit):
        cli._resolve_json_path("data.txt", must_exist=False)
    with pytest.raises(SystemExit):
        cli._resolve_json_path("missing.json", must_exist=True)
    assert cli._resolve_json_path("backup.json", must_exist=False) == tmp_path.resolve() / "backup.json"


def test_unknown_command_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main([])
    assert "export-data" in capsys.readouterr().out
