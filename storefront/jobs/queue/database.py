"""Distributed job queue stored in the relational database.

Any number of dispatcher processes may poll the same tables. A poll claims
the oldest visible job by pushing its ``visible_at`` past the visibility
timeout with a compare-and-swap on ``receive_count``; on PostgreSQL the
candidate row is also selected ``FOR UPDATE SKIP LOCKED`` so that pollers do
not queue up behind each other. A consumer that dies (or shuts down)
mid-job simply lets the lease run out and the job is delivered again.
"""

import asyncio
from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import delete, select, update

from storefront.core.errors import QueueTransportFailure
from storefront.db.models.jobs import DeadLetterJob, JobRecord
from storefront.db.repositories.orders import coerce_uuid
from storefront.jobs.queue.base import JobQueue, describe_error, normalize_payload, validate_job_type
from storefront.jobs.types import DEFAULT_MAX_RETRIES, DeadLetterEntry, Job, utcnow

logger = structlog.get_logger(__name__)

# Candidates tried per poll when other consumers keep winning the claim
CLAIM_ATTEMPTS = 5


def _to_job(record: JobRecord, receipt: Optional[int] = None) -> Job:
    return Job(
        id=str(record.id),
        type=record.type,
        payload=record.payload or {},
        retries=record.retries,
        max_retries=record.max_retries,
        created_at=record.created_at,
        receipt=receipt,
    )


class DatabaseJobQueue(JobQueue):
    """Job rows and leases in the ``jobs`` table.

    ``poll`` hands out the job together with its lease token (the claimed
    ``receive_count``). Ack and nack only touch the row while that token is
    still current, so a consumer whose lease ran out cannot release or
    delete a job another consumer has since claimed.
    """

    transactional = True

    def __init__(
        self,
        session_factory,
        *,
        visibility_timeout: float = 60.0,
        poll_interval: float = 1.0,
        group_by_type: bool = False,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._session_factory = session_factory
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self.group_by_type = group_by_type
        self.default_max_retries = default_max_retries

    def _new_record(self, job_type, payload, max_retries: Optional[int]) -> JobRecord:
        now = utcnow()
        return JobRecord(
            id=uuid4(),
            type=validate_job_type(job_type).value,
            payload=normalize_payload(payload),
            retries=0,
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            receive_count=0,
            created_at=now,
            visible_at=now,
        )

    async def enqueue(self, job_type, payload, max_retries: Optional[int] = None) -> Job:
        record = self._new_record(job_type, payload, max_retries)
        job = _to_job(record)

        try:
            async with self._session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as exc:
            raise QueueTransportFailure(f"Failed to enqueue {job.type} job") from exc

        logger.info("Job enqueued", job_id=job.id, job_type=job.type)
        return job

    def stage(self, session, job_type, payload, max_retries: Optional[int] = None) -> Job:
        # session must be bound to the database this queue polls
        record = self._new_record(job_type, payload, max_retries)
        session.add(record)
        job = _to_job(record)
        logger.info("Job staged", job_id=job.id, job_type=job.type)
        return job

    async def poll(self, wait_time: Optional[float] = None) -> Optional[Job]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (wait_time or 0)

        while True:
            job = await self._claim_next()
            remaining = deadline - loop.time()
            if job is not None or remaining <= 0:
                return job
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _claim_next(self) -> Optional[Job]:
        try:
            async with self._session_factory() as session:
                for _ in range(CLAIM_ATTEMPTS):
                    now = utcnow()
                    stmt = (
                        select(JobRecord)
                        .where(JobRecord.visible_at <= now)
                        .order_by(JobRecord.created_at, JobRecord.id)
                        .limit(1)
                        .with_for_update(skip_locked=True)
                        .execution_options(populate_existing=True)
                    )
                    if self.group_by_type:
                        in_flight_types = select(JobRecord.type).where(
                            JobRecord.leased_at.is_not(None),
                            JobRecord.visible_at > now,
                        )
                        stmt = stmt.where(JobRecord.type.not_in(in_flight_types))

                    record = (await session.execute(stmt)).scalar_one_or_none()
                    if record is None:
                        await session.commit()
                        return None

                    job = _to_job(record, receipt=record.receive_count + 1)
                    claimed = await session.execute(
                        update(JobRecord)
                        .where(
                            JobRecord.id == record.id,
                            JobRecord.receive_count == record.receive_count,
                        )
                        .values(
                            visible_at=now + timedelta(seconds=self.visibility_timeout),
                            leased_at=now,
                            receive_count=JobRecord.receive_count + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    await session.commit()
                    if claimed.rowcount == 1:
                        return job
                return None
        except SQLAlchemyError as exc:
            raise QueueTransportFailure("Failed to poll job queue") from exc

    async def ack(self, job_id, receipt: Optional[int] = None) -> None:
        job_uuid = coerce_uuid(job_id)
        if job_uuid is None:
            logger.warning("Ack for malformed job id", job_id=str(job_id))
            return

        stmt = delete(JobRecord).where(JobRecord.id == job_uuid)
        if receipt is not None:
            stmt = stmt.where(JobRecord.receive_count == receipt)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise QueueTransportFailure(f"Failed to ack job {job_id}") from exc

        if result.rowcount == 0:
            logger.info("Ack for a job that is no longer leased", job_id=str(job_id), receipt=receipt)
            return
        logger.debug("Job acknowledged", job_id=str(job_id))

    async def nack(self, job: Job, error) -> Optional[DeadLetterEntry]:
        job_uuid = coerce_uuid(job.id)
        error_text = describe_error(error)

        try:
            async with self._session_factory() as session:
                record = None
                if job_uuid is not None:
                    stmt = select(JobRecord).where(JobRecord.id == job_uuid)
                    if job.receipt is not None:
                        stmt = stmt.where(JobRecord.receive_count == job.receipt)
                    record = (
                        await session.execute(
                            stmt.with_for_update().execution_options(populate_existing=True)
                        )
                    ).scalar_one_or_none()
                if record is None:
                    await session.commit()
                    logger.warning("Nack for a job that is no longer leased", job_id=job.id, receipt=job.receipt)
                    return None

                retries = record.retries + 1
                now = utcnow()

                if retries >= record.max_retries:
                    failed = Job(
                        id=str(record.id),
                        type=record.type,
                        payload=record.payload or {},
                        retries=retries,
                        max_retries=record.max_retries,
                        created_at=record.created_at,
                    )
                    session.add(
                        DeadLetterJob(
                            job_id=record.id,
                            type=record.type,
                            payload=record.payload,
                            retries=retries,
                            max_retries=record.max_retries,
                            error=error_text,
                            created_at=record.created_at,
                            failed_at=now,
                        )
                    )
                    await session.delete(record)
                    await session.commit()
                    logger.error(
                        "Job moved to dead-letter queue",
                        job_id=failed.id,
                        job_type=failed.type,
                        retries=retries,
                        error=error_text,
                    )
                    return DeadLetterEntry(job=failed, error=error_text, failed_at=now)

                max_retries = record.max_retries
                record.retries = retries
                record.last_error = error_text
                record.visible_at = now
                record.leased_at = None
                await session.commit()
        except SQLAlchemyError as exc:
            raise QueueTransportFailure(f"Failed to nack job {job.id}") from exc

        logger.warning(
            "Job requeued for retry",
            job_id=job.id,
            job_type=job.type,
            retries=retries,
            max_retries=max_retries,
        )
        return None

    async def dead_letter_entries(self) -> List[DeadLetterEntry]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(DeadLetterJob).order_by(DeadLetterJob.failed_at, DeadLetterJob.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise QueueTransportFailure("Failed to read dead-letter queue") from exc

        return [
            DeadLetterEntry(
                job=Job(
                    id=str(row.job_id),
                    type=row.type,
                    payload=row.payload or {},
                    retries=row.retries,
                    max_retries=row.max_retries,
                    created_at=row.created_at,
                ),
                error=row.error or "",
                failed_at=row.failed_at,
            )
            for row in rows
        ]
