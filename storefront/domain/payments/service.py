"""Payment settlement.

Providers deliver events at least once, so ``on_payment_confirmed`` must be
safe to run any number of times for the same order: only the caller that
wins the PENDING -> PAID compare-and-swap takes stock and enqueues jobs.
The status change, the stock decrements and (with the database queue) the
follow-on jobs are committed in one transaction.
"""

import enum
from typing import List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.errors import (
    InsufficientStock,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from storefront.db.models.orders import Order
from storefront.db.repositories.orders import get_order_by_id
from storefront.domain.inventory import ledger
from storefront.domain.orders.jobs import commit_with_jobs, notification_job, render_jobs
from storefront.domain.orders.state_machine import SETTLED_STATUSES, OrderStatus, transition
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.types import JobType, NotificationKind
from .gateway import PaymentGateway, PaymentIntent
from .schemas import PaymentEvent, PaymentEventOutcome

logger = structlog.get_logger(__name__)


class PaymentOutcome(str, enum.Enum):
    OK = "OK"
    IGNORED = "IGNORED"


async def on_payment_confirmed(
    db: AsyncSession,
    queue: JobQueue,
    order_id,
    payment_reference: str,
) -> PaymentOutcome:
    order = await get_order_by_id(db, order_id)
    if order is None:
        raise NotFoundError("Order not found", order_id=str(order_id))

    if OrderStatus(order.status) in SETTLED_STATUSES:
        logger.info(
            "Payment already settled, ignoring confirmation",
            order_id=str(order_id),
            status=order.status,
            payment_reference=payment_reference,
        )
        return PaymentOutcome.IGNORED

    # plain values only: a lost race rolls the session back and expires the order
    lines = [(item.sku_id, item.quantity) for item in order.items]
    jobs = render_jobs(order)
    jobs.append(notification_job(order, NotificationKind.ORDER_CONFIRMED))

    try:
        await transition(db, order, OrderStatus.PAID, commit=False, payment_reference=payment_reference)
    except InvalidTransition as exc:
        if exc.source in SETTLED_STATUSES:
            # a duplicate delivery won the race
            logger.info(
                "Payment settled concurrently, ignoring confirmation",
                order_id=str(order_id),
                status=exc.source.value,
                payment_reference=payment_reference,
            )
            return PaymentOutcome.IGNORED
        raise

    try:
        await _take_stock(db, order_id, lines)
        enqueued = await commit_with_jobs(db, queue, jobs)
    except Exception:
        # nothing of the settlement is kept; a redelivery starts over
        await db.rollback()
        raise

    logger.info(
        "Payment confirmed",
        order_id=str(order_id),
        payment_reference=payment_reference,
        render_jobs=sum(1 for job in enqueued if job.type == JobType.RENDER_PRINT.value),
    )
    return PaymentOutcome.OK


async def _take_stock(db: AsyncSession, order_id, lines: List[Tuple]) -> None:
    # a failed decrement writes nothing; it is logged and the order stays PAID
    for sku_id, quantity in lines:
        try:
            await ledger.decrement(db, sku_id, quantity)
        except (InsufficientStock, NotFoundError) as exc:
            logger.error(
                "Stock decrement failed after payment",
                order_id=str(order_id),
                sku_id=str(sku_id),
                quantity=quantity,
                error=exc.message,
                code=exc.kind.value,
            )


async def on_payment_failed(
    db: AsyncSession,
    order_id,
    payment_reference: Optional[str] = None,
) -> None:
    """The order stays PENDING so the customer can pay again."""
    order = await get_order_by_id(db, order_id)
    logger.warning(
        "Payment failed",
        order_id=str(order_id),
        payment_reference=payment_reference,
        status=order.status if order is not None else None,
    )


async def handle_payment_event(
    db: AsyncSession,
    queue: JobQueue,
    event: PaymentEvent,
) -> Optional[PaymentOutcome]:
    """Webhook entry point. Never raises: the provider only needs an acknowledgement."""
    try:
        if event.outcome is PaymentEventOutcome.SUCCEEDED:
            if not event.payment_reference:
                raise ValidationError("paymentReference is required for a succeeded payment")
            return await on_payment_confirmed(db, queue, event.order_id, event.payment_reference)
        await on_payment_failed(db, event.order_id, event.payment_reference)
        return None
    except Exception:
        logger.exception(
            "Failed to process payment event",
            order_id=event.order_id,
            outcome=event.outcome.value,
        )
        return None


async def create_payment_intent(
    db: AsyncSession,
    gateway: PaymentGateway,
    order_id: UUID,
    user_id: Optional[str] = None,
) -> dict:
    order = await get_order_by_id(db, order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise NotFoundError("Order not found", order_id=str(order_id))

    if order.status != OrderStatus.PENDING.value:
        raise ValidationError(f"Order is {order.status}, not PENDING", order_id=str(order.id), status=order.status)

    if order.payment_reference:
        return {
            "message": "Payment intent already exists",
            "payment_reference": order.payment_reference,
            "client_secret": None,
        }

    intent: PaymentIntent = gateway.create_payment_intent(
        order.total_amount,
        settings.CURRENCY,
        {"order_id": str(order.id), "user_id": order.user_id},
    )
    await _record_payment_reference(db, order, intent.payment_reference)

    logger.info(
        "Payment intent created",
        order_id=str(order.id),
        payment_reference=intent.payment_reference,
        amount=str(order.total_amount),
    )
    return {
        "message": "Payment intent created",
        "payment_reference": intent.payment_reference,
        "client_secret": intent.client_secret,
    }


async def _record_payment_reference(db: AsyncSession, order: Order, reference: str) -> None:
    order.payment_reference = reference
    await db.commit()
