from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from uuid import uuid4

from storefront.db.base import Base


class Sku(Base):
    __tablename__ = "skus"

    """Stock ledger entry: one row per sellable variant (size/color) of a product.

    Holds the authoritative unit price used at checkout and the available
    quantity. ``stock`` is decremented only when an order is paid, through a
    single conditional UPDATE, and can never drop below zero.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    product_id = Column(Uuid(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)

    code = Column(String, nullable=False, unique=True)
    size = Column(String, nullable=True)
    color = Column(String, nullable=True)

    price = Column(Numeric(18, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="skus", lazy="joined")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_skus_stock_non_negative"),
    )
