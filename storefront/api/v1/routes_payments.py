# storefront/api/v1/routes_payments.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError as PayloadError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user_id, get_db, get_gateway, get_queue
from storefront.core.errors import ValidationError
from storefront.domain.payments.gateway import PaymentGateway
from storefront.domain.payments.schemas import PaymentEvent, PaymentIntentCreate, PaymentIntentOut
from storefront.domain.payments.service import create_payment_intent, handle_payment_event
from storefront.jobs.queue.base import JobQueue


router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("/intents", response_model=PaymentIntentOut)
async def create_payment_intent_endpoint(
    payload: PaymentIntentCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return await create_payment_intent(db, gateway, payload.order_id, user_id=user_id)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_payment_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_queue),
    gateway: PaymentGateway = Depends(get_gateway),
):
    # signature covers the raw body
    body = await request.body()
    if not gateway.verify_webhook_signature(body, x_payment_signature):
        raise ValidationError("Webhook verification failed")

    try:
        event = PaymentEvent.model_validate_json(body)
    except PayloadError as exc:
        raise ValidationError("Malformed payment event") from exc

    await handle_payment_event(db, queue, event)
    return {"received": True}
