from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from storefront.db.models.inventory import Sku
from storefront.db.repositories.orders import coerce_uuid


async def get_sku_by_id(
    db: AsyncSession,
    sku_id,
) -> Optional[Sku]:
    sku_uuid = coerce_uuid(sku_id)
    if sku_uuid is None:
        return None
    result = await db.execute(
        select(Sku)
        .where(Sku.id == sku_uuid)
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()
