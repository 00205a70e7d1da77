"""Job dispatcher routing, settlement and run loops."""

import asyncio

import pytest

from storefront.jobs.dispatcher import JobDispatcher, JobOutcome
from storefront.jobs.queue.memory import InMemoryJobQueue
from storefront.jobs.types import JobType


class PollingQueue(InMemoryJobQueue):
    """Memory queue without notifications, so the dispatcher has to poll it."""

    notifies = False

    def __init__(self, failures=0, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.poll_calls = 0

    async def poll(self, wait_time=None):
        self.poll_calls += 1
        if self.failures:
            self.failures -= 1
            raise ConnectionError("queue unreachable")
        return await super().poll(wait_time)


async def _wait_for(predicate, timeout=2.0):
    async def check():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(check(), timeout)


class TestProcess:
    async def test_success_is_acked(self, queue):
        seen = []

        async def handler(payload):
            seen.append(payload)

        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: handler})
        await queue.enqueue("RENDER_PRINT", {"order_id": "o1"})

        outcome = await dispatcher.process(await queue.poll())

        assert outcome is JobOutcome.ACKED
        assert seen == [{"order_id": "o1"}]
        assert queue.in_flight() == []
        assert queue.pending_count() == 0

    async def test_sync_handler(self, queue):
        dispatcher = JobDispatcher(queue, {JobType.SEND_NOTIFICATION: lambda payload: {"ok": True}})
        await queue.enqueue("SEND_NOTIFICATION", {})

        assert await dispatcher.process(await queue.poll()) is JobOutcome.ACKED

    async def test_raised_error_is_nacked(self, queue):
        async def handler(payload):
            raise RuntimeError("renderer down")

        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: handler})
        await queue.enqueue("RENDER_PRINT", {})

        outcome = await dispatcher.process(await queue.poll())

        assert outcome is JobOutcome.RETRY
        retried = await queue.poll()
        assert retried.retries == 1

    async def test_returned_error_counts_as_failure(self, queue):
        async def handler(payload):
            return ValueError("bad design")

        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: handler})
        await queue.enqueue("RENDER_PRINT", {}, max_retries=1)

        outcome = await dispatcher.process(await queue.poll())

        assert outcome is JobOutcome.DEAD_LETTERED
        [entry] = await queue.dead_letter_entries()
        assert entry.error == "bad design"

    async def test_unrouted_job_is_left_alone(self, queue):
        dispatcher = JobDispatcher(queue, {})
        await queue.enqueue("RENDER_PRINT", {})
        job = await queue.poll()

        outcome = await dispatcher.process(job)

        assert outcome is JobOutcome.UNROUTED
        assert [pending.id for pending in queue.in_flight()] == [job.id]
        assert await queue.dead_letter_entries() == []

    async def test_retry_law_through_dispatcher(self, queue):
        attempts = []

        async def flaky(payload):
            attempts.append(1)
            if len(attempts) < 3:
                raise RuntimeError("transient")

        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: flaky})
        await queue.enqueue("RENDER_PRINT", {})

        processed = await dispatcher.drain()

        assert processed == 3
        assert dispatcher.stats[JobOutcome.ACKED] == 1
        assert dispatcher.stats[JobOutcome.RETRY] == 2
        assert await queue.dead_letter_entries() == []


class TestEventDrivenRun:
    async def test_drains_backlog_then_reacts_to_new_jobs(self, queue):
        handled = []

        async def handler(payload):
            handled.append(payload["n"])

        await queue.enqueue("RENDER_PRINT", {"n": 1})
        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: handler})
        task = asyncio.create_task(dispatcher.run())

        await _wait_for(lambda: handled == [1])
        await queue.enqueue("RENDER_PRINT", {"n": 2})
        await _wait_for(lambda: handled == [1, 2])

        dispatcher.stop()
        await asyncio.wait_for(task, 1)
        assert dispatcher.stats[JobOutcome.ACKED] == 2

    async def test_in_flight_job_finishes_on_stop(self, queue):
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def slow(payload):
            started.set()
            await release.wait()
            finished.append(True)

        dispatcher = JobDispatcher(queue, {JobType.RENDER_PRINT: slow})
        await queue.enqueue("RENDER_PRINT", {})
        task = asyncio.create_task(dispatcher.run())

        await asyncio.wait_for(started.wait(), 1)
        dispatcher.stop()
        release.set()
        await asyncio.wait_for(task, 1)

        assert finished == [True]
        assert queue.in_flight() == []


class TestPollingRun:
    async def test_backs_off_after_queue_errors(self):
        queue = PollingQueue(failures=2)
        handled = []
        dispatcher = JobDispatcher(
            queue,
            {JobType.SEND_NOTIFICATION: lambda payload: handled.append(payload)},
            wait_time=0.05,
            backoff=0.01,
        )
        await queue.enqueue("SEND_NOTIFICATION", {"n": 1})

        task = asyncio.create_task(dispatcher.run())
        await _wait_for(lambda: handled)
        dispatcher.stop()
        await asyncio.wait_for(task, 1)

        assert handled == [{"n": 1}]
        assert queue.poll_calls >= 3

    async def test_stop_abandons_pending_poll(self):
        queue = PollingQueue()
        dispatcher = JobDispatcher(queue, {}, wait_time=30, backoff=30)

        task = asyncio.create_task(dispatcher.run())
        await _wait_for(lambda: queue.poll_calls == 1)
        dispatcher.stop()

        await asyncio.wait_for(task, 1)
        assert dispatcher.stopping

    async def test_stop_interrupts_backoff(self):
        queue = PollingQueue(failures=100)
        dispatcher = JobDispatcher(queue, {}, wait_time=0.01, backoff=30)

        task = asyncio.create_task(dispatcher.run())
        await _wait_for(lambda: queue.poll_calls == 1)
        dispatcher.stop()

        await asyncio.wait_for(task, 1)
        assert queue.poll_calls == 1


@pytest.mark.parametrize("wait_time", [None, 0.01])
async def test_wait_stopped_returns_false_until_stop(queue, wait_time):
    dispatcher = JobDispatcher(queue, {})

    assert await dispatcher.wait_stopped(0.01) is False
    dispatcher.stop()
    assert await dispatcher.wait_stopped(wait_time) is True
