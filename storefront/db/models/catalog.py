from sqlalchemy import Boolean, Column, DateTime, String, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from uuid import uuid4

from storefront.db.base import Base


class Product(Base):
    __tablename__ = "products"

    """A printable product (t-shirt, mug, poster...) offered in the catalogue.

    Products are owned by the catalogue module; the fulfillment core only
    reads them to refuse checkout of inactive products. Sellable variants
    live in the stock ledger (see ``Sku``).
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    image_url = Column(String, nullable=True)

    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    skus = relationship("Sku", back_populates="product")
