import asyncio
from collections import deque
from dataclasses import replace
from typing import Callable, Dict, List, Optional
from uuid import uuid4

import structlog

from storefront.jobs.queue.base import JobQueue, describe_error, normalize_payload, validate_job_type
from storefront.jobs.types import DEFAULT_MAX_RETRIES, DeadLetterEntry, Job, utcnow

logger = structlog.get_logger(__name__)


class InMemoryJobQueue(JobQueue):
    """FIFO queue living in the current process.

    Polled jobs move to an in-flight map until they are acked or nacked; a
    job nobody acks (e.g. no handler for its type) stays there for
    inspection. Only one dispatcher may consume from an instance.
    """

    notifies = True

    def __init__(self, default_max_retries: int = DEFAULT_MAX_RETRIES):
        self.default_max_retries = default_max_retries
        self._jobs = deque()
        self._in_flight: Dict[str, Job] = {}
        self._dead_letters: List[DeadLetterEntry] = []
        self._listeners: List[Callable[[], None]] = []
        self._available = asyncio.Event()

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        self._available.set()
        for listener in list(self._listeners):
            listener()

    async def enqueue(self, job_type, payload, max_retries: Optional[int] = None) -> Job:
        job = Job(
            id=f"local_{uuid4().hex}",
            type=validate_job_type(job_type).value,
            payload=normalize_payload(payload),
            retries=0,
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            created_at=utcnow(),
        )
        self._jobs.append(job)
        logger.info("Job enqueued", job_id=job.id, job_type=job.type)
        self._notify()
        return job

    async def poll(self, wait_time: Optional[float] = None) -> Optional[Job]:
        if not self._jobs and wait_time:
            self._available.clear()
            try:
                await asyncio.wait_for(self._available.wait(), wait_time)
            except asyncio.TimeoutError:
                return None

        if not self._jobs:
            return None
        job = self._jobs.popleft()
        self._in_flight[job.id] = job
        return job

    async def ack(self, job_id, receipt: Optional[int] = None) -> None:
        if self._in_flight.pop(str(job_id), None) is not None:
            logger.debug("Job acknowledged", job_id=str(job_id))

    async def nack(self, job: Job, error) -> Optional[DeadLetterEntry]:
        current = self._in_flight.pop(job.id, None)
        if current is None:
            logger.warning("Nack for a job that is not in flight", job_id=job.id)
            return None

        failed = replace(current, retries=current.retries + 1)
        if failed.retries >= failed.max_retries:
            entry = DeadLetterEntry(job=failed, error=describe_error(error), failed_at=utcnow())
            self._dead_letters.append(entry)
            logger.error(
                "Job moved to dead-letter queue",
                job_id=failed.id,
                job_type=failed.type,
                retries=failed.retries,
                error=entry.error,
            )
            return entry

        logger.warning(
            "Job requeued for retry",
            job_id=failed.id,
            job_type=failed.type,
            retries=failed.retries,
            max_retries=failed.max_retries,
        )
        self._jobs.append(failed)
        self._notify()
        return None

    async def dead_letter_entries(self) -> List[DeadLetterEntry]:
        return list(self._dead_letters)

    def pending_count(self) -> int:
        return len(self._jobs)

    def in_flight(self) -> List[Job]:
        return list(self._in_flight.values())
