"""Payment gateway port and the fake adapter used in development and tests.

A real provider adapter only has to implement ``PaymentGateway``; checkout
and settlement code never talk to a provider directly.
"""

import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from time import time_ns
from typing import List, Optional

from storefront.core.config import settings


@dataclass(frozen=True)
class PaymentIntent:
    payment_reference: str
    client_secret: str


class PaymentGateway(ABC):

    @abstractmethod
    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
    ) -> PaymentIntent:
        """Open a payment for ``amount`` with the provider."""
        ...

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> bool:
        """Check that a webhook body really comes from the provider."""
        ...


class FakeGateway(PaymentGateway):
    """Gateway that never leaves the process.

    References look like ``pi_mock_<ns>``. A webhook is authentic when its
    signature header equals the configured shared secret.
    """

    def __init__(self, webhook_secret: Optional[str] = None) -> None:
        self.webhook_secret = webhook_secret or settings.PAYMENT_WEBHOOK_SECRET
        self.calls: List[dict] = []

    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: dict,
    ) -> PaymentIntent:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount": amount,
                "currency": currency,
                "metadata": dict(metadata),
            }
        )
        reference = f"pi_mock_{time_ns()}"
        return PaymentIntent(payment_reference=reference, client_secret=f"{reference}_secret_mock")

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: Optional[str],
    ) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(signature, self.webhook_secret)
