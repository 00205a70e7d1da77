from sqlalchemy import Column, DateTime, String, Uuid
from sqlalchemy.sql import func
from uuid import uuid4

from storefront.db.base import Base


class Address(Base):
    __tablename__ = "addresses"

    """Shipping address saved for a user at checkout.

    Each order points at the address row created together with it, so later
    edits made through the address book never alter where an order ships.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(String, nullable=False, index=True)

    label = Column(String(50), nullable=False, default="Home")
    line1 = Column(String(200), nullable=False)
    line2 = Column(String(200), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    zip = Column(String(20), nullable=False)
    country = Column(String(5), nullable=False, default="IN")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
