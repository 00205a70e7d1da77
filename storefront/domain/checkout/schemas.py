# storefront/domain/checkout/schemas.py
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class OrderItemIn(BaseModel):
    sku_id: UUID
    quantity: int = Field(ge=1, le=99)
    # opaque design document (canvas JSON) for the print renderer
    design: Optional[Any] = None


class AddressIn(BaseModel):
    label: str = Field(default="Home", max_length=50)
    line1: str = Field(min_length=1, max_length=200)
    line2: Optional[str] = Field(default=None, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip: str = Field(min_length=1, max_length=20)
    country: str = Field(default="IN", max_length=5)


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(min_length=1, max_length=20)
    address: AddressIn
    idempotency_key: str = Field(min_length=1, max_length=64)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=32)


class OrderItemOut(BaseModel):
    id: UUID
    sku_id: UUID
    line_number: int
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    design: Optional[Any] = None

    class Config:
        from_attributes = True


class AddressOut(BaseModel):
    id: UUID
    label: str
    line1: str
    line2: Optional[str]
    city: str
    state: str
    zip: str
    country: str

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: UUID
    user_id: str
    status: str
    total_amount: Decimal
    idempotency_key: str
    payment_reference: Optional[str]
    contact_email: Optional[str]
    contact_phone: Optional[str]
    address: AddressOut
    items: List[OrderItemOut]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderListOut(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination
