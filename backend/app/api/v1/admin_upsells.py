from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_shop
from app.db.session import get_session
from app.schemas.upsell import UpsellBlockCreate, UpsellBlockRead, UpsellBlockUpdate
from app.services import upsells as upsells_service

router = APIRouter(prefix="/admin/upsells", tags=["admin"])


@router.get("", response_model=list[UpsellBlockRead])
async def list_upsell_blocks(
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> list[UpsellBlockRead]:
    blocks = await upsells_service.list_blocks(session, shop)
    return [UpsellBlockRead.model_validate(block) for block in blocks]


@router.post("", response_model=UpsellBlockRead, status_code=status.HTTP_201_CREATED)
async def create_upsell_block(
    payload: UpsellBlockCreate,
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> UpsellBlockRead:
    block = await upsells_service.create_block(session, shop, payload)
    return UpsellBlockRead.model_validate(block)


@router.get("/{block_id}", response_model=UpsellBlockRead)
async def get_upsell_block(
    block_id: UUID,
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> UpsellBlockRead:
    block = await upsells_service.get_block_for_shop(session, shop, block_id)
    return UpsellBlockRead.model_validate(block)


@router.patch("/{block_id}", response_model=UpsellBlockRead)
async def update_upsell_block(
    block_id: UUID,
    payload: UpsellBlockUpdate,
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> UpsellBlockRead:
    block = await upsells_service.update_block(session, shop, block_id, payload)
    return UpsellBlockRead.model_validate(block)


@router.delete("/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_upsell_block(
    block_id: UUID,
    shop: str = Depends(get_current_shop),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await upsells_service.delete_block(session, shop, block_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
