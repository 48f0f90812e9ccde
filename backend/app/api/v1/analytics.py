from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.upsells import PUBLIC_CORS_HEADERS, public_error
from app.core.config import settings
from app.core.rate_limit import client_identifier, per_identifier_limiter
from app.db.session import get_session
from app.schemas.error import PublicErrorResponse
from app.schemas.analytics import (
    AnalyticsEventPayload,
    AnalyticsEventRead,
    AnalyticsRecordResponse,
    AnalyticsReport,
    ConversionCounts,
    SummaryTotals,
    TopProductRead,
)
from app.services import analytics as analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])
logger = logging.getLogger(__name__)

PUBLIC_ERROR_RESPONSES = {400: {"model": PublicErrorResponse}, 500: {"model": PublicErrorResponse}}

analytics_rate_limit = per_identifier_limiter(
    client_identifier,
    settings.analytics_rate_limit_events,
    60,
    key="analytics:events",
)


def build_report(summary: analytics_service.AnalyticsSummary) -> AnalyticsReport:
    return AnalyticsReport(
        analytics=[AnalyticsEventRead.model_validate(event) for event in summary.events],
        summary=SummaryTotals(total_clicks=summary.total_clicks, total_value=float(summary.total_value)),
        conversions=ConversionCounts(clicked=summary.clicked, converted=summary.converted),
        top_products=[TopProductRead.model_validate(product) for product in summary.top_products],
    )


def camel_json(model, *, status_code: int = status.HTTP_200_OK, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(model.model_dump(by_alias=True, exclude_none=False)),
        headers=headers,
    )


@router.options("", include_in_schema=False)
async def analytics_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=PUBLIC_CORS_HEADERS)


@router.post(
    "",
    response_model=AnalyticsRecordResponse,
    responses=PUBLIC_ERROR_RESPONSES,
    dependencies=[Depends(analytics_rate_limit)],
)
async def record_analytics_event(request: Request, session: AsyncSession = Depends(get_session)) -> Response:
    try:
        body = await request.json()
    except ValueError:
        return public_error("Invalid JSON body")
    if not isinstance(body, dict):
        return public_error("Invalid JSON body")
    try:
        payload = AnalyticsEventPayload.model_validate(body)
    except ValidationError:
        return public_error("Invalid event payload")

    try:
        result = await analytics_service.record_event(session, payload)
    except analytics_service.EventValidationError as exc:
        return public_error(str(exc))
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("analytics_record_failed", extra={"shop": payload.shop})
        return public_error("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)

    response = AnalyticsRecordResponse(id=result.id, updated=True if result.updated else None)
    return JSONResponse(
        content=jsonable_encoder(response.model_dump(by_alias=True, exclude_none=True)),
        headers=PUBLIC_CORS_HEADERS,
    )


@router.get("", response_model=AnalyticsReport, responses=PUBLIC_ERROR_RESPONSES)
async def get_analytics(
    shop: str | None = Query(default=None),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    placement: str | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> Response:
    shop = (shop or "").strip()
    if not shop:
        return public_error("Shop parameter is required")
    try:
        filters = analytics_service.build_filters(shop, start_date, end_date, placement)
    except analytics_service.EventValidationError as exc:
        return public_error(str(exc))
    try:
        summary = await analytics_service.summarize(session, filters, raw_limit=settings.analytics_raw_event_limit)
    except analytics_service.AnalyticsQueryError:
        return public_error("Failed to fetch analytics", status.HTTP_500_INTERNAL_SERVER_ERROR)
    return camel_json(build_report(summary), headers=PUBLIC_CORS_HEADERS)
