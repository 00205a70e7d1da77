"""Standalone job worker: ``storefront-worker``.

Runs one dispatcher against the database queue until SIGINT or SIGTERM.
Any number of workers may run side by side; the queue lease keeps them
from handling the same job at once.
"""

import asyncio
import os
import signal
from contextlib import suppress
from typing import Optional

import structlog

from storefront.core.config import Settings, settings as default_settings
from storefront.core.errors import ValidationError
from storefront.core.logging import add_context, clear_context, configure_logging
from storefront.jobs.dispatcher import JobDispatcher
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.registry import build_handler_registry, build_queue

logger = structlog.get_logger(__name__)


async def heartbeat(queue: JobQueue, dispatcher: JobDispatcher, interval: float) -> None:
    while not await dispatcher.wait_stopped(interval):
        try:
            dead_letters = len(await queue.dead_letter_entries())
        except Exception as exc:
            logger.warning("Heartbeat could not read the dead-letter queue", error=str(exc))
            dead_letters = None
        logger.info(
            "Worker heartbeat",
            dead_letters=dead_letters,
            stats={outcome.value: count for outcome, count in dispatcher.stats.items()},
        )


async def run_worker(settings: Settings = default_settings, queue: Optional[JobQueue] = None) -> None:
    if queue is None:
        if settings.QUEUE_BACKEND.lower() == "memory":
            raise ValidationError(
                "The memory queue only exists inside the API process; set QUEUE_BACKEND=database to run a worker"
            )
        queue = build_queue(settings)

    dispatcher = JobDispatcher(
        queue,
        build_handler_registry(settings),
        wait_time=settings.QUEUE_WAIT_TIME,
        backoff=settings.DISPATCHER_BACKOFF,
    )

    add_context(component="worker", pid=os.getpid())
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, dispatcher.stop)

    logger.info("Worker starting", environment=settings.ENVIRONMENT, queue_backend=settings.QUEUE_BACKEND)
    beat = asyncio.create_task(heartbeat(queue, dispatcher, settings.WORKER_HEARTBEAT_INTERVAL))
    try:
        await dispatcher.run()
    finally:
        dispatcher.stop()
        await beat
        for sig in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        await queue.close()
        logger.info("Worker shut down")
        clear_context()


def main() -> None:
    configure_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
