import argparse
import asyncio
import json
import re
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.session import SessionLocal
from app.models.upsell import BlockRefKind, UpsellAnalytics, UpsellBlock, UpsellPlacement
from app.services import analytics as analytics_service
from app.services import upsells as upsells_service

SAFE_JSON_FILENAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*\.json$")

_BLOCK_FIELDS = (
    "shop",
    "name",
    "collection_handle",
    "product_handles",
    "title",
    "button_text",
    "show_count",
    "auto_slide",
    "slide_duration",
    "layout",
    "columns",
    "background_color",
    "text_color",
    "button_color",
    "border_radius",
    "padding",
    "center_padding",
    "properties",
    "active",
)
_ANALYTICS_FIELDS = (
    "shop",
    "product_id",
    "variant_id",
    "product_name",
    "variant_title",
    "placement",
    "customer_hash",
    "session_id",
    "added_to_cart",
)


def _normalize_json_filename(raw_path: str) -> str:
    raw = (raw_path or "").strip()
    if not raw:
        raise SystemExit("Path is required")
    if Path(raw).name != raw:
        raise SystemExit("Only JSON file names are allowed (no directories)")
    if not SAFE_JSON_FILENAME_RE.fullmatch(raw):
        raise SystemExit("Invalid JSON file name")
    return raw


def _resolve_json_path(raw_path: str, *, must_exist: bool) -> Path:
    raw = _normalize_json_filename(raw_path)
    resolved = (Path.cwd().resolve() / raw).resolve(strict=False)
    if must_exist and not resolved.is_file():
        raise SystemExit(f"Input file not found: {resolved}")
    if not must_exist and resolved.is_dir():
        raise SystemExit(f"Output path points to a directory: {resolved}")
    return resolved


def _serialize_block(block: UpsellBlock) -> Dict[str, Any]:
    data: Dict[str, Any] = {name: getattr(block, name) for name in _BLOCK_FIELDS}
    data["id"] = str(block.id)
    data["placement"] = block.placement.value
    data["created_at"] = block.created_at.isoformat() if block.created_at else None
    data["updated_at"] = block.updated_at.isoformat() if block.updated_at else None
    return data


def _serialize_event(event: UpsellAnalytics) -> Dict[str, Any]:
    data: Dict[str, Any] = {name: getattr(event, name) for name in _ANALYTICS_FIELDS}
    data["id"] = str(event.id)
    data["upsell_block_ref"] = event.upsell_block_ref.value
    data["upsell_block_id"] = str(event.upsell_block_id) if event.upsell_block_id else None
    data["price"] = str(event.price)
    data["created_at"] = event.created_at.isoformat() if event.created_at else None
    return data


def _parse_optional_datetime(value: Any) -> datetime | None:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _parse_optional_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    return uuid.UUID(str(value))


async def export_data(output: Path, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> None:
    data: Dict[str, Any] = {}
    async with session_factory() as session:
        blocks = (await session.execute(select(UpsellBlock).order_by(UpsellBlock.created_at))).scalars().all()
        events = (await session.execute(select(UpsellAnalytics).order_by(UpsellAnalytics.created_at))).scalars().all()
        data["upsell_blocks"] = [_serialize_block(block) for block in blocks]
        data["upsell_analytics"] = [_serialize_event(event) for event in events]

    output.write_text(json.dumps(data, indent=2), encoding="utf-8")
    print(f"Exported {len(data['upsell_blocks'])} blocks and {len(data['upsell_analytics'])} events to {output}")


async def _import_blocks(session: AsyncSession, blocks_payload: list[Dict[str, Any]]) -> int:
    for payload in blocks_payload:
        block = UpsellBlock(
            id=uuid.UUID(str(payload["id"])),
            placement=UpsellPlacement(payload.get("placement") or UpsellPlacement.checkout.value),
            **{name: payload[name] for name in _BLOCK_FIELDS if name in payload},
        )
        created_at = _parse_optional_datetime(payload.get("created_at"))
        if created_at:
            block.created_at = created_at
        updated_at = _parse_optional_datetime(payload.get("updated_at"))
        if updated_at:
            block.updated_at = updated_at
        await session.merge(block)
    return len(blocks_payload)


async def _import_events(session: AsyncSession, events_payload: list[Dict[str, Any]]) -> int:
    for payload in events_payload:
        event = UpsellAnalytics(
            id=uuid.UUID(str(payload["id"])),
            upsell_block_ref=BlockRefKind(payload.get("upsell_block_ref") or BlockRefKind.absent.value),
            upsell_block_id=_parse_optional_uuid(payload.get("upsell_block_id")),
            price=Decimal(str(payload.get("price") or "0")),
            **{name: payload[name] for name in _ANALYTICS_FIELDS if name in payload},
        )
        created_at = _parse_optional_datetime(payload.get("created_at"))
        if created_at:
            event.created_at = created_at
        await session.merge(event)
    return len(events_payload)


async def import_data(input_path: Path, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> None:
    payload = json.loads(input_path.read_text(encoding="utf-8"))
    async with session_factory() as session:
        blocks = await _import_blocks(session, payload.get("upsell_blocks", []))
        events = await _import_events(session, payload.get("upsell_analytics", []))
        await session.commit()
    print(f"Imported {blocks} blocks and {events} events from {input_path}")


async def purge_shop(shop: str, session_factory: async_sessionmaker[AsyncSession] = SessionLocal) -> None:
    shop_norm = (shop or "").strip().lower()
    if not shop_norm:
        raise SystemExit("Shop domain is required")
    async with session_factory() as session:
        blocks = await upsells_service.delete_all_blocks(session, shop_norm)
        events = await analytics_service.delete_shop_analytics(session, shop_norm)
    print(f"Purged {shop_norm}: {blocks} blocks, {events} events")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Checkout upsell data utilities")
    subparsers = parser.add_subparsers(dest="command")

    export_parser = subparsers.add_parser("export-data", help="Export upsell blocks and analytics to JSON")
    export_parser.add_argument("--output", default="export.json")

    import_parser = subparsers.add_parser("import-data", help="Import upsell blocks and analytics from JSON")
    import_parser.add_argument("--input", required=True)

    purge_parser = subparsers.add_parser("purge-shop", help="Delete every block and event stored for a shop")
    purge_parser.add_argument("--shop", required=True)
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "export-data":
        output_path = _resolve_json_path(args.output, must_exist=False)
        asyncio.run(export_data(output_path))
        return True

    if args.command == "import-data":
        input_path = _resolve_json_path(args.input, must_exist=True)
        asyncio.run(import_data(input_path))
        return True

    if args.command == "purge-shop":
        asyncio.run(purge_shop(args.shop))
        return True

    return False


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
