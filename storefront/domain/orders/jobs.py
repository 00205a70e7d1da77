"""Follow-on jobs produced by order lifecycle changes."""

from typing import List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.models.orders import Order
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.types import Job, JobType, NotificationKind

PendingJob = Tuple[JobType, dict]


def render_payload(order: Order, item) -> dict:
    return {
        "order_id": str(order.id),
        "order_item_id": str(item.id),
        "design": item.design,
    }


def notification_payload(order: Order, kind: NotificationKind) -> dict:
    return {
        "kind": NotificationKind(kind).value,
        "order_id": str(order.id),
        "email": order.contact_email,
        "phone": order.contact_phone,
    }


def render_jobs(order: Order) -> List[PendingJob]:
    """One RENDER_PRINT job per item that carries a design document."""
    return [
        (JobType.RENDER_PRINT, render_payload(order, item))
        for item in order.items
        if item.design is not None
    ]


def notification_job(order: Order, kind: NotificationKind) -> PendingJob:
    return JobType.SEND_NOTIFICATION, notification_payload(order, kind)


async def commit_with_jobs(
    db: AsyncSession,
    queue: JobQueue,
    jobs: List[PendingJob],
) -> List[Job]:
    """Commit the open transaction together with ``jobs``.

    A queue stored in the same database gets the job rows inside that
    transaction, so a status change and its jobs are written together or
    not at all. Other queues receive the jobs after the commit succeeded.
    """
    if queue.transactional:
        staged = [queue.stage(db, job_type, payload) for job_type, payload in jobs]
        await db.commit()
        return staged

    await db.commit()
    return [await queue.enqueue(job_type, payload) for job_type, payload in jobs]
