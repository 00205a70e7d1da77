# storefront/api/v1/routes_checkout.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user_id, get_db
from storefront.domain.checkout.schemas import OrderCreate, OrderListOut, OrderOut
from storefront.domain.checkout.service import cancel_order, create_order, get_order, list_orders


router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


@router.post("", response_model=OrderOut, status_code=201)
async def create_order_endpoint(
    payload: OrderCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    order = await create_order(db, user_id, payload)
    return order


@router.get("", response_model=OrderListOut)
async def list_orders_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await list_orders(db, user_id, page=page, limit=limit, status=status)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order_endpoint(
    order_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await get_order(db, user_id, order_id)


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order_endpoint(
    order_id: UUID,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await cancel_order(db, user_id, order_id)
