# storefront/api/v1/routes_admin.py
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_db, get_queue
from storefront.domain.admin.schemas import DashboardStats, StatusUpdate
from storefront.domain.admin.service import (
    admin_get_order,
    admin_list_orders,
    dashboard_stats,
    dead_letter_jobs,
    update_order_status,
)
from storefront.domain.checkout.schemas import OrderListOut, OrderOut
from storefront.jobs.queue.base import JobQueue


router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/orders", response_model=OrderListOut)
async def admin_list_orders_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    search: Optional[str] = Query(None, min_length=1, max_length=100),
    db: AsyncSession = Depends(get_db),
):
    return await admin_list_orders(
        db, page=page, limit=limit, status=status, user_id=user_id, search=search
    )


@router.get("/orders/{order_id}", response_model=OrderOut)
async def admin_get_order_endpoint(
    order_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    return await admin_get_order(db, order_id)


@router.patch("/orders/{order_id}/status", response_model=OrderOut)
async def update_order_status_endpoint(
    order_id: UUID,
    payload: StatusUpdate,
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
):
    return await update_order_status(db, queue, order_id, payload.status)


@router.get("/stats", response_model=DashboardStats)
async def dashboard_stats_endpoint(db: AsyncSession = Depends(get_db)):
    return await dashboard_stats(db)


@router.get("/jobs/dead-letter", response_model=List[dict])
async def dead_letter_endpoint(queue: JobQueue = Depends(get_queue)):
    return await dead_letter_jobs(queue)
