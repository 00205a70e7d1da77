"""Stock ledger: availability checks and stock deduction per SKU.

Checkout only validates availability; nothing is held for pending orders,
so two pending orders may both pass the check for the last unit. Stock is
taken when the payment is confirmed, one conditional UPDATE per SKU.
"""

import enum

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import update

from storefront.core.errors import InsufficientStock, NotFoundError, ValidationError
from storefront.db.models.inventory import Sku
from storefront.db.repositories.orders import coerce_uuid
from storefront.db.repositories.skus import get_sku_by_id


class StockCheck(str, enum.Enum):
    OK = "OK"
    INSUFFICIENT = "INSUFFICIENT"


def _require_positive(quantity: int) -> None:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", quantity=quantity)


def stock_check(sku: Sku, quantity: int) -> StockCheck:
    _require_positive(quantity)
    if sku.stock < quantity:
        return StockCheck.INSUFFICIENT
    return StockCheck.OK


async def check_available(
    db: AsyncSession,
    sku_id,
    quantity: int,
) -> StockCheck:
    """Validate that ``quantity`` units are on hand. No hold is placed."""
    sku = await get_sku_by_id(db, sku_id)
    if sku is None:
        raise NotFoundError(f"SKU not found: {sku_id}", sku_id=str(sku_id))
    return stock_check(sku, quantity)


async def decrement(
    db: AsyncSession,
    sku_id,
    quantity: int,
) -> None:
    """Take ``quantity`` units off the SKU in a single statement.

    The guard lives in the WHERE clause, so concurrent decrements of the same
    SKU serialize on the row and none of them can drive stock below zero.
    The caller owns the transaction.
    """
    _require_positive(quantity)
    sku_uuid = coerce_uuid(sku_id)
    if sku_uuid is None:
        raise NotFoundError(f"SKU not found: {sku_id}", sku_id=str(sku_id))

    result = await db.execute(
        update(Sku)
        .where(Sku.id == sku_uuid, Sku.stock >= quantity)
        .values(stock=Sku.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    sku = await get_sku_by_id(db, sku_id)
    if sku is None:
        raise NotFoundError(f"SKU not found: {sku_id}", sku_id=str(sku_id))
    raise InsufficientStock(
        f"Insufficient stock for {sku.code}. Available: {sku.stock}, requested: {quantity}",
        sku_id=str(sku_id),
        available=sku.stock,
        requested=quantity,
    )
