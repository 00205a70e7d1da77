"""Job queue port.

Two backends implement it: ``InMemoryJobQueue`` for a single process that
both produces and consumes, and ``DatabaseJobQueue`` for workers running in
other processes or machines. Callers must not rely on ordering across job
types, nor on a job being delivered only once.
"""

import json
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from storefront.core.errors import ValidationError
from storefront.jobs.types import DeadLetterEntry, Job, JobType


def validate_job_type(job_type) -> JobType:
    try:
        return JobType(job_type)
    except ValueError:
        raise ValidationError(f"Unknown job type: {job_type}", job_type=str(job_type)) from None


def normalize_payload(payload) -> dict:
    """Round-trip through JSON so every backend hands handlers the same shapes."""
    if payload is None:
        return {}
    return json.loads(json.dumps(payload, default=str))


def describe_error(error) -> str:
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


class JobQueue(ABC):
    # True when subscribe() delivers "job available" notifications
    notifies = False
    # True when stage() can write jobs inside a caller's database transaction
    transactional = False

    @abstractmethod
    async def enqueue(self, job_type, payload, max_retries: Optional[int] = None) -> Job:
        """Add a job; raises instead of enqueueing partially."""

    @abstractmethod
    async def poll(self, wait_time: Optional[float] = None) -> Optional[Job]:
        """Return the next available job, waiting up to ``wait_time`` seconds."""

    @abstractmethod
    async def ack(self, job_id, receipt: Optional[int] = None) -> None:
        """Remove a finished job. Acking an unknown or already acked job is a no-op.

        ``receipt`` is the lease token from ``Job.receipt``; when given, the job
        is only removed if that lease is still the current one.
        """

    @abstractmethod
    async def nack(self, job: Job, error) -> Optional[DeadLetterEntry]:
        """Record a failed attempt.

        Returns the dead-letter entry when the retry budget is exhausted,
        otherwise None (the job will be delivered again).
        """

    @abstractmethod
    async def dead_letter_entries(self) -> List[DeadLetterEntry]:
        ...

    def stage(self, session, job_type, payload, max_retries: Optional[int] = None) -> Job:
        """Add a job to ``session`` without committing; it becomes visible with the caller's commit."""
        raise NotImplementedError(f"{type(self).__name__} cannot enqueue inside a database transaction")

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        raise NotImplementedError(f"{type(self).__name__} does not publish job notifications")

    async def close(self) -> None:
        return None
