"""Startup wiring: job type -> handler, and queue backend selection."""

from functools import partial
from typing import Dict, Mapping, Optional

import structlog

from storefront.core.config import Settings, settings as default_settings
from storefront.core.errors import ValidationError
from storefront.jobs.channels import EmailChannel, LoggingEmailChannel, LoggingSmsChannel, SmsChannel
from storefront.jobs.dispatcher import Handler
from storefront.jobs.handlers.render_print import render_print_file
from storefront.jobs.handlers.send_notification import send_order_notification
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.queue.database import DatabaseJobQueue
from storefront.jobs.queue.memory import InMemoryJobQueue
from storefront.jobs.types import JobType

logger = structlog.get_logger(__name__)

QUEUE_BACKENDS = ("memory", "database")


def validate_registry(registry: Mapping) -> None:
    unknown = [key for key in registry if key not in {job_type.value for job_type in JobType}]
    if unknown:
        raise ValidationError(f"Handlers registered for unknown job types: {', '.join(map(str, unknown))}")

    missing = [job_type.value for job_type in JobType if job_type not in registry]
    if missing:
        logger.warning("Job types without a handler", job_types=missing)


def build_handler_registry(
    settings: Settings = default_settings,
    *,
    email_channel: Optional[EmailChannel] = None,
    sms_channel: Optional[SmsChannel] = None,
) -> Dict[JobType, Handler]:
    registry = {
        JobType.RENDER_PRINT: partial(render_print_file, output_dir=settings.PRINT_OUTPUT_DIR),
        JobType.SEND_NOTIFICATION: partial(
            send_order_notification,
            email_channel=email_channel or LoggingEmailChannel(),
            sms_channel=sms_channel or LoggingSmsChannel(),
        ),
    }
    validate_registry(registry)
    return registry


def build_queue(settings: Settings = default_settings, session_factory=None) -> JobQueue:
    backend = settings.QUEUE_BACKEND.lower()
    if backend == "memory":
        return InMemoryJobQueue(default_max_retries=settings.JOB_MAX_RETRIES)
    if backend == "database":
        if session_factory is None:
            from storefront.db.base import AsyncSessionLocal as session_factory
        return DatabaseJobQueue(
            session_factory,
            visibility_timeout=settings.QUEUE_VISIBILITY_TIMEOUT,
            poll_interval=settings.QUEUE_POLL_INTERVAL,
            group_by_type=settings.QUEUE_GROUP_BY_TYPE,
            default_max_retries=settings.JOB_MAX_RETRIES,
        )
    raise ValidationError(
        f"Unknown QUEUE_BACKEND {settings.QUEUE_BACKEND!r}; expected one of {', '.join(QUEUE_BACKENDS)}"
    )
