from decimal import Decimal
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import String, cast, or_
from sqlalchemy.sql import func, select

from storefront.db.models.orders import Order


def coerce_uuid(value) -> Optional[UUID]:
    """Parse an id coming from a URL or a job payload; None when malformed."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


async def get_order_by_id(
    db: AsyncSession,
    order_id,
) -> Optional[Order]:
    order_uuid = coerce_uuid(order_id)
    if order_uuid is None:
        return None
    result = await db.execute(
        select(Order)
        .where(Order.id == order_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_order_by_idempotency_key(
    db: AsyncSession,
    idempotency_key: str,
) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.idempotency_key == idempotency_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_orders(
    db: AsyncSession,
    *,
    user_id: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[Order], int]:
    filters = []
    if user_id is not None:
        filters.append(Order.user_id == user_id)
    if status is not None:
        filters.append(Order.status == status)
    if search:
        filters.append(_search_filter(search))

    result = await db.execute(
        select(Order)
        .where(*filters)
        .order_by(Order.created_at.desc(), Order.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    orders = result.scalars().all()

    total = await db.scalar(select(func.count()).select_from(Order).where(*filters))
    return list(orders), total or 0


async def count_orders_by_status(db: AsyncSession) -> dict:
    result = await db.execute(
        select(Order.status, func.count()).group_by(Order.status)
    )
    return {status: count for status, count in result.all()}


async def sum_total_amount(db: AsyncSession, statuses) -> Decimal:
    return await db.scalar(
        select(func.coalesce(func.sum(Order.total_amount), 0)).where(Order.status.in_(list(statuses)))
    )


def _search_filter(search: str):
    term = search.strip()
    conditions = [
        Order.user_id.icontains(term, autoescape=True),
        Order.contact_email.icontains(term, autoescape=True),
        Order.payment_reference.icontains(term, autoescape=True),
    ]
    # ids are compared as bare lowercase hex: PostgreSQL renders uuids with dashes, SQLite stores hex
    hex_term = term.replace("-", "").lower()
    if hex_term:
        conditions.append(func.replace(cast(Order.id, String), "-", "").contains(hex_term, autoescape=True))
    return or_(*conditions)
