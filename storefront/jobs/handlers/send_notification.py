"""SEND_NOTIFICATION job handler: order status emails and text messages."""

import structlog

from storefront.core.errors import JobHandlerFailure
from storefront.jobs.channels import EmailChannel, SmsChannel
from storefront.jobs.types import NotificationKind

logger = structlog.get_logger(__name__)

TEMPLATES = {
    NotificationKind.ORDER_CONFIRMED: (
        "Order #{ref} Confirmed",
        "Your order #{ref} has been confirmed and payment received. We'll start processing it right away!",
    ),
    NotificationKind.ORDER_SHIPPED: (
        "Order #{ref} Shipped!",
        "Your order #{ref} has been shipped. Track your delivery in your account.",
    ),
    NotificationKind.ORDER_DELIVERED: (
        "Order #{ref} Delivered",
        "Your order #{ref} has been delivered. Enjoy your custom prints!",
    ),
    NotificationKind.ORDER_REFUNDED: (
        "Order #{ref} Refunded",
        "Your order #{ref} has been refunded. The amount will appear in your account within 5-7 business days.",
    ),
}


def render_template(kind: NotificationKind, order_id: str):
    subject, text = TEMPLATES[kind]
    ref = str(order_id)[-8:]
    return subject.format(ref=ref), text.format(ref=ref)


async def send_order_notification(
    payload: dict,
    *,
    email_channel: EmailChannel,
    sms_channel: SmsChannel,
) -> dict:
    try:
        kind = NotificationKind(payload.get("kind"))
    except ValueError:
        raise JobHandlerFailure(f"Unknown notification kind: {payload.get('kind')}") from None

    order_id = payload.get("order_id")
    if not order_id:
        raise JobHandlerFailure("SEND_NOTIFICATION payload requires order_id")

    subject, text = render_template(kind, order_id)
    email = payload.get("email")
    phone = payload.get("phone")
    sent = {}

    if email:
        result = await email_channel.send(to=email, subject=subject, body=text)
        if result.get("status") != "sent":
            raise JobHandlerFailure(f"Email to {email} failed: {result.get('error', 'unknown error')}")
        sent["email"] = result.get("message_id")

    if phone:
        result = await sms_channel.send(to=phone, message=text)
        if result.get("status") != "sent":
            raise JobHandlerFailure(f"SMS to {phone} failed: {result.get('error', 'unknown error')}")
        sent["sms"] = result.get("message_id")

    if not sent:
        logger.warning("Notification has no recipient contact", order_id=str(order_id), kind=kind.value)
    else:
        logger.info("Notification sent", order_id=str(order_id), kind=kind.value, channels=sorted(sent))
    return sent
