# storefront/domain/payments/schemas.py
import enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PaymentEventOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentEvent(BaseModel):
    """Normalized payment event as posted by the provider webhook."""

    order_id: str = Field(alias="orderId", min_length=1)
    payment_reference: Optional[str] = Field(default=None, alias="paymentReference")
    outcome: PaymentEventOutcome

    class Config:
        populate_by_name = True


class PaymentIntentCreate(BaseModel):
    order_id: UUID


class PaymentIntentOut(BaseModel):
    message: str
    payment_reference: str
    client_secret: Optional[str] = None
