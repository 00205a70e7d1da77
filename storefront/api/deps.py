# storefront/api/deps.py
from fastapi import Header, Request

from storefront.db.base import get_db  # noqa: F401
from storefront.domain.payments.gateway import PaymentGateway
from storefront.jobs.queue.base import JobQueue


def get_queue(request: Request) -> JobQueue:
    return request.app.state.queue


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_current_user_id(x_user_id: str = Header(..., min_length=1)) -> str:
    # authentication happens upstream; the gateway forwards the user id
    return x_user_id
