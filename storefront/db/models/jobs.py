from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
import uuid

from storefront.db.base import Base


class JobRecord(Base):
    __tablename__ = "jobs"

    """Active job waiting for (or leased by) a dispatcher.

    A job is available when ``visible_at`` is in the past. Polling claims it
    by pushing ``visible_at`` forward by the visibility timeout; if the
    consumer neither acks nor nacks before that, the job becomes visible to
    other consumers again. Acked jobs are deleted.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    type = Column(String, nullable=False)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    retries = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    receive_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    visible_at = Column(DateTime(timezone=True), nullable=False)
    leased_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_jobs_visible_created", "visible_at", "created_at"),
        Index("ix_jobs_type_visible", "type", "visible_at"),
    )


class DeadLetterJob(Base):
    __tablename__ = "dead_letter_jobs"

    """Job that exhausted its retry budget, kept for manual inspection.

    Rows are never deleted by the application.
    """

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    type = Column(String, nullable=False)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)

    retries = Column(Integer, nullable=False)
    max_retries = Column(Integer, nullable=False)
    error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    failed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
