import json
import re

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_session
from app.schemas.error import PublicErrorResponse
from app.schemas.upsell import UpsellConfigResponse
from app.services import upsells as upsells_service

router = APIRouter(tags=["upsells"])

PUBLIC_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_CALLBACK_RE = re.compile(r"^[A-Za-z_$][0-9A-Za-z_$]*(\.[A-Za-z_$][0-9A-Za-z_$]*)*$")
_CALLBACK_MAX_LENGTH = 64


def public_error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    body = PublicErrorResponse(error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=PUBLIC_CORS_HEADERS)


def is_valid_callback(callback: str) -> bool:
    return len(callback) <= _CALLBACK_MAX_LENGTH and bool(_CALLBACK_RE.match(callback))


def jsonp_response(callback: str, content: dict) -> Response:
    body = f"{callback}({json.dumps(content)})"
    return Response(content=body, media_type="application/javascript", headers=PUBLIC_CORS_HEADERS)


@router.options("/upsells", include_in_schema=False)
async def upsells_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=PUBLIC_CORS_HEADERS)


@router.get("/upsells", response_model=UpsellConfigResponse, responses={400: {"model": PublicErrorResponse}})
async def get_upsell_configuration(
    shop: str | None = Query(default=None),
    placement: str | None = Query(default=None),
    callback: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Configuration the checkout extension renders for one shop and placement."""
    shop = (shop or "").strip()
    if not shop:
        return public_error("Shop parameter is required")
    if callback and not is_valid_callback(callback):
        return public_error("Invalid callback parameter")
    try:
        placement_value = upsells_service.normalize_placement(placement)
    except upsells_service.PlacementNotAllowedError as exc:
        return public_error(str(exc))

    configuration = await upsells_service.resolve(session, shop, placement_value)
    content = jsonable_encoder(
        UpsellConfigResponse.model_validate(configuration).model_dump(by_alias=True)
    )
    if callback:
        return jsonp_response(callback, content)
    return JSONResponse(content=content, headers=PUBLIC_CORS_HEADERS)
