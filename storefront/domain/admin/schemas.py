# storefront/domain/admin/schemas.py
from decimal import Decimal
from typing import Dict

from pydantic import BaseModel

from storefront.domain.orders.state_machine import OrderStatus


class StatusUpdate(BaseModel):
    status: OrderStatus


class OrderCounts(BaseModel):
    total: int
    by_status: Dict[str, int]


class DashboardStats(BaseModel):
    orders: OrderCounts
    total_products: int
    total_revenue: Decimal

