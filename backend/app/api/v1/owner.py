from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import require_owner_secret
from app.db.session import get_session
from app.schemas.owner import OwnerBlockRead, OwnerDashboard, OwnerShopGroup, OwnerStats
from app.services import upsells as upsells_service

router = APIRouter(prefix="/owner", tags=["owner"], dependencies=[Depends(require_owner_secret)])


@router.get("/dashboard", response_model=OwnerDashboard)
async def owner_dashboard(session: AsyncSession = Depends(get_session)) -> OwnerDashboard:
    """Every shop's blocks for the app owner, gated by `OWNER_DASHBOARD_SECRET`."""
    overview = await upsells_service.owner_overview(session)
    shops = [
        OwnerShopGroup(
            shop=shop,
            blocks=[
                OwnerBlockRead.model_validate(usage.block).model_copy(update={"analytics_count": usage.analytics_count})
                for usage in usages
            ],
        )
        for shop, usages in overview.shops.items()
    ]
    return OwnerDashboard(
        stats=OwnerStats(
            total_upsells=overview.total_upsells,
            active_upsells=overview.active_upsells,
            unique_shops=overview.unique_shops,
        ),
        shops=shops,
    )
