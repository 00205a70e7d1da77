"""Job dispatcher: pulls jobs off a queue, routes them by type, acks or nacks.

Two scheduling modes, chosen from the queue:

* event-driven, for queues that publish "job available" notifications
  (``InMemoryJobQueue``): drain whatever is queued, then sleep until the
  next notification;
* polling, for everything else (``DatabaseJobQueue``): long-poll in a loop
  and back off when the queue itself is failing.

Handler failures never escape the dispatcher; they turn into queue state
(a retry or a dead-letter entry). ``stop()`` lets the job in hand finish
and abandons a pending poll.
"""

import asyncio
import enum
import inspect
import time
from contextlib import suppress
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from storefront.jobs.queue.base import JobQueue
from storefront.jobs.types import Job

logger = structlog.get_logger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class JobOutcome(str, enum.Enum):
    ACKED = "ACKED"
    RETRY = "RETRY"
    DEAD_LETTERED = "DEAD_LETTERED"
    UNROUTED = "UNROUTED"


class JobDispatcher:
    def __init__(
        self,
        queue: JobQueue,
        handlers: Mapping[str, Handler],
        *,
        wait_time: float = 20.0,
        backoff: float = 5.0,
    ):
        self.queue = queue
        self.handlers = dict(handlers)
        self.wait_time = wait_time
        self.backoff = backoff
        self.stats = {outcome: 0 for outcome in JobOutcome}
        self._stopping = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("Dispatcher stop requested")
        self._stopping.set()

    async def process(self, job: Job) -> JobOutcome:
        """Run one job and settle it on the queue."""
        handler = self.handlers.get(job.type)
        if handler is None:
            # left un-acked: fix the registry and the job comes back
            logger.error("No handler registered for job type", job_id=job.id, job_type=job.type)
            return self._count(JobOutcome.UNROUTED)

        logger.info("Processing job", job_id=job.id, job_type=job.type, retries=job.retries)
        started = time.perf_counter()

        error: Optional[BaseException] = None
        try:
            result = handler(job.payload)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            error = exc
        else:
            if isinstance(result, Exception):
                error = result

        duration_ms = round((time.perf_counter() - started) * 1000, 2)

        if error is None:
            await self.queue.ack(job.id, receipt=job.receipt)
            logger.info("Job completed", job_id=job.id, job_type=job.type, duration_ms=duration_ms)
            return self._count(JobOutcome.ACKED)

        logger.error(
            "Job failed",
            job_id=job.id,
            job_type=job.type,
            duration_ms=duration_ms,
            error=str(error) or type(error).__name__,
            exc_info=error,
        )
        dead_letter = await self.queue.nack(job, error)
        return self._count(JobOutcome.DEAD_LETTERED if dead_letter else JobOutcome.RETRY)

    def _count(self, outcome: JobOutcome) -> JobOutcome:
        self.stats[outcome] += 1
        return outcome

    async def drain(self) -> int:
        """Process jobs until the queue has nothing immediately available."""
        processed = 0
        while not self._stopping.is_set():
            job = await self.queue.poll()
            if job is None:
                break
            await self.process(job)
            processed += 1
        return processed

    async def run(self) -> None:
        logger.info(
            "Dispatcher started",
            queue=type(self.queue).__name__,
            mode="event-driven" if self.queue.notifies else "polling",
            job_types=sorted(str(job_type) for job_type in self.handlers),
        )
        if self.queue.notifies:
            await self._run_event_driven()
        else:
            await self._run_polling()
        logger.info("Dispatcher stopped", stats={outcome.value: count for outcome, count in self.stats.items()})

    async def _run_event_driven(self) -> None:
        wakeup = asyncio.Event()
        unsubscribe = self.queue.subscribe(wakeup.set)
        try:
            while not self._stopping.is_set():
                wakeup.clear()
                await self.drain()
                await self._wait_until_set(wakeup)
        finally:
            unsubscribe()

    async def _run_polling(self) -> None:
        while not self._stopping.is_set():
            try:
                job = await self._poll_unless_stopped()
                if job is not None:
                    await self.process(job)
            except Exception as exc:
                logger.error(
                    "Job queue unavailable, backing off",
                    error=str(exc),
                    backoff=self.backoff,
                    exc_info=exc,
                )
                await self._sleep(self.backoff)

    async def _poll_unless_stopped(self) -> Optional[Job]:
        poll = asyncio.ensure_future(self.queue.poll(wait_time=self.wait_time))
        stopped = asyncio.ensure_future(self._stopping.wait())
        try:
            await asyncio.wait({poll, stopped}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            poll.cancel()
            raise
        finally:
            stopped.cancel()

        if not poll.done():
            poll.cancel()
        try:
            return await poll
        except asyncio.CancelledError:
            if not self._stopping.is_set():
                raise
            return None

    async def _wait_until_set(self, event: asyncio.Event) -> None:
        waiters = {
            asyncio.ensure_future(event.wait()),
            asyncio.ensure_future(self._stopping.wait()),
        }
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    async def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Wait up to ``timeout`` seconds for a stop request; True once stopping."""
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout)
        return self._stopping.is_set()

    async def _sleep(self, seconds: float) -> None:
        await self.wait_stopped(seconds)
