from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1 import admin_analytics, admin_upsells, analytics, owner, upsells, webhooks
from app.core.metrics import snapshot as metrics_snapshot
from app.db.session import get_session

api_router = APIRouter()

api_router.include_router(upsells.router)
api_router.include_router(analytics.router)
api_router.include_router(admin_upsells.router)
api_router.include_router(admin_analytics.router)
api_router.include_router(owner.router)
api_router.include_router(webhooks.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/health/ready", tags=["health"])
async def readiness(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "unavailable"})
    return {"status": "ready"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
