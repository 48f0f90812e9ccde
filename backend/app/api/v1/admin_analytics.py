from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.analytics import build_report
from app.core.config import settings
from app.core.dependencies import get_current_shop
from app.db.session import get_session
from app.schemas.analytics import AnalyticsDashboard, DailyStatRead, PlacementShareRead
from app.services import analytics as analytics_service

router = APIRouter(prefix="/admin/analytics", tags=["admin"])


@router.get("", response_model=AnalyticsDashboard)
async def analytics_dashboard(
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
    placement: str | None = Query(default=None),
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> AnalyticsDashboard:
    """Dashboard view for the embedded admin; defaults to the last 30 days."""
    try:
        filters = analytics_service.build_filters(
            shop,
            start_date,
            end_date,
            placement,
            default_window_days=settings.analytics_default_window_days,
        )
    except analytics_service.EventValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    try:
        summary = await analytics_service.summarize(session, filters, raw_limit=settings.analytics_raw_event_limit)
    except analytics_service.AnalyticsQueryError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc

    report = build_report(summary)
    return AnalyticsDashboard(
        **dict(report),
        range_from=filters.start,
        range_to=filters.end,
        placement=filters.placement or "all",
        chart_data=[
            DailyStatRead(
                day=stat.day,
                label=stat.label,
                clicks=stat.clicks,
                conversions=stat.conversions,
                revenue=float(stat.revenue),
            )
            for stat in summary.daily
        ],
        placement_breakdown=[PlacementShareRead.model_validate(share) for share in summary.placements],
    )
