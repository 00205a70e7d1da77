# storefront/domain/checkout/service.py
from decimal import Decimal
from math import ceil
from typing import Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import (
    ConflictError,
    InsufficientStock,
    NotFoundError,
    ProductUnavailable,
    ValidationError,
)
from storefront.db.models.addresses import Address
from storefront.db.models.order_items import OrderItem
from storefront.db.models.orders import Order
from storefront.db.repositories import orders as orders_repo
from storefront.db.repositories.skus import get_sku_by_id
from storefront.domain.inventory.ledger import StockCheck, check_available
from storefront.domain.orders.state_machine import OrderStatus, transition
from .schemas import OrderCreate

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


async def create_order(
    db: AsyncSession,
    user_id: str,
    data: OrderCreate,
) -> Order:
    """Create a PENDING order from a checkout cart, at most once per idempotency key.

    A repeated key returns the stored order as-is, without re-validating or
    re-pricing the cart. Prices always come from the stock ledger. Stock is
    only checked here; it is taken when the payment is confirmed.
    """
    if not data.items:
        raise ValidationError("At least one item is required")

    existing = await orders_repo.get_order_by_idempotency_key(db, data.idempotency_key)
    if existing is not None:
        _require_same_caller(existing, user_id, data.idempotency_key)
        logger.info(
            "Order already exists for idempotency key",
            order_id=str(existing.id),
            idempotency_key=data.idempotency_key,
        )
        return existing

    try:
        order = await _persist_new_order(db, user_id, data)
    except IntegrityError as exc:
        # a concurrent request with the same key committed first
        await db.rollback()
        winner = await orders_repo.get_order_by_idempotency_key(db, data.idempotency_key)
        if winner is None:
            raise ConflictError("Order could not be stored", idempotency_key=data.idempotency_key) from exc
        _require_same_caller(winner, user_id, data.idempotency_key)
        logger.info(
            "Concurrent checkout resolved to existing order",
            order_id=str(winner.id),
            idempotency_key=data.idempotency_key,
        )
        return winner
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Order created",
        order_id=str(order.id),
        user_id=user_id,
        total_amount=str(order.total_amount),
        items=len(order.items),
    )
    return order


def _require_same_caller(order: Order, user_id: str, idempotency_key: str) -> None:
    # keys are unique store-wide; a replay never reveals another customer's order
    if order.user_id != user_id:
        raise ConflictError("Idempotency key already used", idempotency_key=idempotency_key)


async def _persist_new_order(
    db: AsyncSession,
    user_id: str,
    data: OrderCreate,
) -> Order:
    requested = {}
    for item in data.items:
        requested[item.sku_id] = requested.get(item.sku_id, 0) + item.quantity

    skus = {}
    for sku_id, quantity in requested.items():
        sku = await get_sku_by_id(db, sku_id)
        if sku is None:
            raise NotFoundError(f"SKU not found: {sku_id}", sku_id=str(sku_id))

        if not sku.product.active:
            raise ProductUnavailable(
                f'Product "{sku.product.name}" is no longer available',
                sku_id=str(sku_id),
            )

        if await check_available(db, sku_id, quantity) is StockCheck.INSUFFICIENT:
            raise InsufficientStock(
                f"Insufficient stock for {sku.product.name} ({sku.size}/{sku.color}). "
                f"Available: {sku.stock}, requested: {quantity}",
                sku_id=str(sku_id),
                available=sku.stock,
                requested=quantity,
            )
        skus[sku_id] = sku

    total_amount = Decimal("0")
    order_items = []
    for line_number, item in enumerate(data.items, start=1):
        # never trust client prices
        unit_price = Decimal(skus[item.sku_id].price).quantize(CENTS)
        line_total = (unit_price * item.quantity).quantize(CENTS)
        total_amount += line_total
        order_items.append(
            OrderItem(
                line_number=line_number,
                sku_id=item.sku_id,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=line_total,
                design=item.design,
            )
        )

    address = Address(user_id=user_id, **data.address.model_dump())
    order = Order(
        id=uuid4(),
        user_id=user_id,
        status=OrderStatus.PENDING.value,
        total_amount=total_amount,
        idempotency_key=data.idempotency_key,
        address=address,
        contact_email=data.email,
        contact_phone=data.phone,
        items=order_items,
    )

    db.add(address)
    db.add(order)
    await db.commit()
    return await orders_repo.get_order_by_id(db, order.id)


async def get_order(
    db: AsyncSession,
    user_id: str,
    order_id,
) -> Order:
    order = await orders_repo.get_order_by_id(db, order_id)
    # another user's order reads as missing
    if order is None or order.user_id != user_id:
        raise NotFoundError("Order not found", order_id=str(order_id))
    return order


async def list_orders(
    db: AsyncSession,
    user_id: Optional[str],
    *,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    if status is not None:
        try:
            status = OrderStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown order status: {status}") from None

    orders, total = await orders_repo.list_orders(
        db, user_id=user_id, status=status, search=search, page=page, limit=limit
    )
    return {
        "orders": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": ceil(total / limit) if limit else 0,
        },
    }


async def cancel_order(
    db: AsyncSession,
    user_id: str,
    order_id: UUID,
) -> Order:
    order = await get_order(db, user_id, order_id)
    return await transition(db, order, OrderStatus.CANCELLED)
