# storefront/domain/admin/service.py
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, select

from storefront.core.errors import InvalidTransition, NotFoundError
from storefront.db.models.catalog import Product
from storefront.db.models.orders import Order
from storefront.db.repositories import orders as orders_repo
from storefront.domain.checkout.service import list_orders
from storefront.domain.orders.jobs import commit_with_jobs, notification_job
from storefront.domain.orders.state_machine import (
    OrderStatus,
    allowed_targets,
    assert_can_transition,
    transition,
)
from storefront.domain.payments.service import PaymentOutcome, on_payment_confirmed
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.types import NotificationKind

logger = structlog.get_logger(__name__)

STATUS_NOTIFICATIONS = {
    OrderStatus.SHIPPED: NotificationKind.ORDER_SHIPPED,
    OrderStatus.DELIVERED: NotificationKind.ORDER_DELIVERED,
    OrderStatus.REFUNDED: NotificationKind.ORDER_REFUNDED,
}

REVENUE_STATUSES = (
    OrderStatus.PAID.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
)


async def admin_list_orders(
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    """All orders, newest first. ``search`` matches part of the order id,
    the user id, the contact email or the payment reference."""
    return await list_orders(db, user_id, page=page, limit=limit, status=status, search=search)


async def admin_get_order(db: AsyncSession, order_id) -> Order:
    order = await orders_repo.get_order_by_id(db, order_id)
    if order is None:
        raise NotFoundError("Order not found", order_id=str(order_id))
    return order


async def update_order_status(
    db: AsyncSession,
    queue: JobQueue,
    order_id,
    new_status,
) -> Order:
    """Staff-driven status change with its follow-on jobs.

    PENDING -> PAID settles the order exactly like a provider confirmation,
    under a manual payment reference.
    """
    order = await admin_get_order(db, order_id)
    order_id = order.id
    target = OrderStatus(new_status)
    assert_can_transition(order.status, target)

    if target is OrderStatus.PAID:
        reference = f"manual_{uuid4().hex[:12]}"
        outcome = await on_payment_confirmed(db, queue, order_id, reference)
        if outcome is PaymentOutcome.IGNORED:
            current = await admin_get_order(db, order_id)
            raise InvalidTransition(OrderStatus(current.status), target, allowed_targets(current.status))
        return await admin_get_order(db, order_id)

    updated = await transition(db, order, target, commit=False)

    kind = STATUS_NOTIFICATIONS.get(target)
    jobs = [notification_job(updated, kind)] if kind is not None else []
    try:
        await commit_with_jobs(db, queue, jobs)
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Order status updated by staff",
        order_id=str(order_id),
        status=target.value,
        notification=kind.value if kind else None,
    )
    return await admin_get_order(db, order_id)


async def dashboard_stats(db: AsyncSession) -> dict:
    by_status = await orders_repo.count_orders_by_status(db)
    counts = {status.value: by_status.get(status.value, 0) for status in OrderStatus}
    revenue = await orders_repo.sum_total_amount(db, REVENUE_STATUSES)
    total_products = await db.scalar(select(func.count()).select_from(Product))

    return {
        "orders": {"total": sum(counts.values()), "by_status": counts},
        "total_products": total_products or 0,
        "total_revenue": Decimal(revenue or 0),
    }


async def dead_letter_jobs(queue: JobQueue) -> List[dict]:
    entries = await queue.dead_letter_entries()
    return [entry.to_dict() for entry in entries]
