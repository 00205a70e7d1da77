"""Error taxonomy for the fulfillment core.

Every error raised by the core carries an explicit ``ErrorKind``; callers
branch on ``exc.kind`` (or the subclass), never on message text.
"""

import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    PRODUCT_UNAVAILABLE = "PRODUCT_UNAVAILABLE"
    CONFLICT = "CONFLICT"
    JOB_HANDLER_FAILURE = "JOB_HANDLER_FAILURE"
    QUEUE_TRANSPORT_FAILURE = "QUEUE_TRANSPORT_FAILURE"


class StorefrontError(Exception):
    kind: ErrorKind

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.kind.value, **self.details}


class ValidationError(StorefrontError):
    kind = ErrorKind.VALIDATION


class NotFoundError(StorefrontError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(StorefrontError):
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, source, target, allowed):
        self.source = source
        self.target = target
        self.allowed = frozenset(allowed)
        allowed_values = sorted(status.value for status in self.allowed)
        super().__init__(
            f"Invalid transition: {source.value} -> {target.value}. "
            f"Valid: {', '.join(allowed_values) or 'none'}",
            source=source.value,
            target=target.value,
            allowed=allowed_values,
        )


class InsufficientStock(StorefrontError):
    kind = ErrorKind.INSUFFICIENT_STOCK


class ProductUnavailable(StorefrontError):
    kind = ErrorKind.PRODUCT_UNAVAILABLE


class ConflictError(StorefrontError):
    kind = ErrorKind.CONFLICT


class JobHandlerFailure(StorefrontError):
    kind = ErrorKind.JOB_HANDLER_FAILURE


class QueueTransportFailure(StorefrontError):
    kind = ErrorKind.QUEUE_TRANSPORT_FAILURE
