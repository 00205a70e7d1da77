"""Order status state machine.

    PENDING -> PAID -> PROCESSING -> SHIPPED -> DELIVERED
    PENDING -> CANCELLED
    PAID / PROCESSING -> REFUNDED

DELIVERED, CANCELLED and REFUNDED are terminal. Every status write goes
through ``transition``, which is a compare-and-swap on the current status so
that two concurrent callers (a redelivered webhook and an admin, two worker
processes...) can never both win the same transition.
"""

import enum
from typing import FrozenSet

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func, update

from storefront.core.errors import InvalidTransition, NotFoundError
from storefront.db.models.orders import Order
from storefront.db.repositories.orders import get_order_by_id

logger = structlog.get_logger(__name__)


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


STATUS_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in STATUS_TRANSITIONS.items() if not targets)

# Statuses an order can only reach after its payment was captured
SETTLED_STATUSES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
    }
)


def allowed_targets(source) -> FrozenSet[OrderStatus]:
    return STATUS_TRANSITIONS[OrderStatus(source)]


def assert_can_transition(source, target) -> None:
    source = OrderStatus(source)
    target = OrderStatus(target)
    if target not in STATUS_TRANSITIONS[source]:
        raise InvalidTransition(source, target, STATUS_TRANSITIONS[source])


async def transition(
    db: AsyncSession,
    order: Order,
    target,
    *,
    commit: bool = True,
    **values,
) -> Order:
    """Move ``order`` to ``target``.

    Extra ``values`` (e.g. ``payment_reference``) are written in the same
    UPDATE. If another writer changed the status since ``order`` was read,
    nothing is written, the session is rolled back and ``InvalidTransition``
    is raised against the status actually stored.

    With ``commit=False`` the UPDATE is left in the open transaction so the
    caller can write related rows (stock, jobs) before committing.
    """
    order_id = order.id
    source = OrderStatus(order.status)
    target = OrderStatus(target)
    assert_can_transition(source, target)

    result = await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == source.value)
        .values(status=target.value, updated_at=func.now(), **values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        # rollback expires every loaded instance; only plain values below
        await db.rollback()
        current = await get_order_by_id(db, order_id)
        if current is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        logger.warning(
            "Order status changed concurrently",
            order_id=str(order_id),
            expected=source.value,
            actual=current.status,
            target=target.value,
        )
        raise InvalidTransition(OrderStatus(current.status), target, allowed_targets(current.status))

    if commit:
        await db.commit()
    logger.info(
        "Order status changed",
        order_id=str(order_id),
        source=source.value,
        target=target.value,
        committed=commit,
    )
    return await get_order_by_id(db, order_id)
