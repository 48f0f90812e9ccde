from __future__ import annotations

import json
from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator

from app.models.upsell import UpsellPlacement
from app.schemas.base import CamelModel


def _join_handles(value: object) -> object:
    # Admin clients may send the legacy handle list either as an array or as the stored CSV.
    if isinstance(value, (list, tuple)):
        return ",".join(str(item).strip() for item in value if str(item or "").strip())
    return value


def _check_properties(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    try:
        decoded = json.loads(value)
    except ValueError as exc:
        raise ValueError("properties must be a JSON object") from exc
    if not isinstance(decoded, dict):
        raise ValueError("properties must be a JSON object")
    return value


class UpsellConfigResponse(CamelModel):
    """Payload served to the checkout extension for one shop + placement."""

    collection_handle: str | None = None
    product_handles: list[str] = Field(default_factory=list)
    title: str
    show_count: int
    auto_slide: bool
    slide_duration: int
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
    upsell_block_id: UUID | None = None


class UpsellBlockFields(CamelModel):
    collection_handle: str | None = Field(default=None, max_length=255)
    product_handles: str | None = None
    title: str = Field(default="Recommended for you", min_length=1, max_length=255)
    button_text: str = Field(default="Add", min_length=1, max_length=100)
    show_count: int = Field(default=10, ge=0)
    auto_slide: bool = False
    slide_duration: int = Field(default=5, ge=0)
    layout: str = Field(default="stack", max_length=50)
    columns: int = Field(default=1, ge=1)
    background_color: str = Field(default="#ffffff", max_length=32)
    text_color: str = Field(default="#000000", max_length=32)
    button_color: str = Field(default="#1a73e8", max_length=32)
    border_radius: int = Field(default=8, ge=0)
    padding: int = Field(default=16, ge=0)
    center_padding: bool = True
    properties: str | None = None


class UpsellBlockCreate(UpsellBlockFields):
    name: str | None = Field(default=None, max_length=255)
    placement: UpsellPlacement = UpsellPlacement.checkout
    active: bool = True

    @field_validator("product_handles", mode="before")
    @classmethod
    def normalize_product_handles(cls, value: object) -> object:
        return _join_handles(value)

    @field_validator("properties")
    @classmethod
    def validate_properties(cls, value: str | None) -> str | None:
        return _check_properties(value)


class UpsellBlockUpdate(CamelModel):
    name: str | None = Field(default=None, max_length=255)
    placement: UpsellPlacement | None = None
    collection_handle: str | None = Field(default=None, max_length=255)
    product_handles: str | None = None
    title: str | None = Field(default=None, min_length=1, max_length=255)
    button_text: str | None = Field(default=None, min_length=1, max_length=100)
    show_count: int | None = Field(default=None, ge=0)
    auto_slide: bool | None = None
    slide_duration: int | None = Field(default=None, ge=0)
    layout: str | None = Field(default=None, max_length=50)
    columns: int | None = Field(default=None, ge=1)
    background_color: str | None = Field(default=None, max_length=32)
    text_color: str | None = Field(default=None, max_length=32)
    button_color: str | None = Field(default=None, max_length=32)
    border_radius: int | None = Field(default=None, ge=0)
    padding: int | None = Field(default=None, ge=0)
    center_padding: bool | None = None
    properties: str | None = None
    active: bool | None = None

    @field_validator("product_handles", mode="before")
    @classmethod
    def normalize_product_handles(cls, value: object) -> object:
        return _join_handles(value)

    @field_validator("properties")
    @classmethod
    def validate_properties(cls, value: str | None) -> str | None:
        return _check_properties(value)


class UpsellBlockRead(UpsellBlockFields):
    id: UUID
    shop: str
    name: str
    placement: UpsellPlacement
    active: bool
    created_at: datetime
    updated_at: datetime
