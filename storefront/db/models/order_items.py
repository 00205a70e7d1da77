from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Numeric, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
import uuid

from storefront.db.base import Base


class OrderItem(Base):
    __tablename__ = "order_items"

    """A single SKU line within an order.

    The unit price is copied from the stock ledger when the order is created
    and is never re-read from the catalogue, so reporting and refunds do not
    depend on later price changes. ``design`` holds the opaque design
    document handed to the print renderer once the order is paid.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False)
    line_number = Column(Integer, nullable=False)

    sku_id = Column(Uuid(as_uuid=True), ForeignKey("skus.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    line_total = Column(Numeric(18, 2), nullable=False)

    design = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    order = relationship("Order", back_populates="items")

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("ix_order_items_order_line", "order_id", "line_number", unique=True),
    )

    @validates("unit_price")
    def _freeze_unit_price(self, key, value):
        if self.unit_price is not None and value != self.unit_price:
            raise ValueError("unit_price is immutable once set")
        return value
