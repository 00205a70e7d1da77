"""Job records exchanged between producers, queues and dispatchers.

Wire shape (``Job.to_dict``)::

    {"id": str, "type": str, "payload": {...}, "retries": int,
     "maxRetries": int, "createdAt": ISO-8601}
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_MAX_RETRIES = 3


class JobType(str, enum.Enum):
    RENDER_PRINT = "RENDER_PRINT"
    SEND_NOTIFICATION = "SEND_NOTIFICATION"


class NotificationKind(str, enum.Enum):
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_SHIPPED = "ORDER_SHIPPED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    ORDER_REFUNDED = "ORDER_REFUNDED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    id: str
    type: str
    payload: Dict[str, Any]
    retries: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    created_at: datetime = field(default_factory=utcnow)
    # lease token set by queues that lease jobs; not part of the wire shape
    receipt: Optional[int] = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "retries": self.retries,
            "maxRetries": self.max_retries,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class DeadLetterEntry:
    job: Job
    error: str
    failed_at: datetime

    def to_dict(self) -> dict:
        return {
            **self.job.to_dict(),
            "error": self.error,
            "failedAt": self.failed_at.isoformat(),
        }
