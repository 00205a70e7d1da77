from sqlalchemy import Column, DateTime, ForeignKey, Index, Numeric, String, Uuid
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func
import uuid

from storefront.db.base import Base


class Order(Base):
    __tablename__ = "orders"

    """A customer order created from a checkout cart.

    The total is computed on the server from the stock ledger prices at
    creation time. ``idempotency_key`` is unique so that a retried checkout
    request always resolves to the first order. ``status`` must only be
    changed through ``storefront.domain.orders.state_machine.transition``;
    orders are never deleted, only cancelled or refunded.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)

    status = Column(String, nullable=False, default="PENDING")
    total_amount = Column(Numeric(18, 2), nullable=False, default=0)

    idempotency_key = Column(String(64), nullable=False)
    address_id = Column(Uuid(as_uuid=True), ForeignKey("addresses.id"), nullable=False)
    payment_reference = Column(String, nullable=True, index=True)

    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.line_number",
    )
    address = relationship("Address", lazy="selectin")

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        Index("uq_orders_idempotency_key", "idempotency_key", unique=True),
        Index("ix_orders_user_created", "user_id", "created_at"),
        Index("ix_orders_status", "status"),
    )

    @validates("status")
    def _guard_status(self, key, value):
        # status changes are compare-and-swap UPDATEs issued by the state machine
        if self.status is not None and value != self.status:
            raise ValueError("order status can only change through a state transition")
        return value
