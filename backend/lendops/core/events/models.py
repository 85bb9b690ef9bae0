from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import Base, IdMixin


class DomainEventRecord(Base, IdMixin):
    """
    Append-only event log. Rows are never updated except for the delivery
    bookkeeping columns (processing_status / processed_at / processing_error).
    """

    __tablename__ = "domain_events"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    event_version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")

    aggregate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    causation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    processing_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("aggregate_type", "aggregate_id", "sequence_number", name="uq_domain_events_aggregate_seq"),
        Index("ix_domain_events_aggregate", "aggregate_type", "aggregate_id", "sequence_number"),
    )


class EventProcessingLog(Base, IdMixin):
    __tablename__ = "event_processing_log"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("domain_events.id", ondelete="CASCADE"), index=True
    )
    handler_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success | failure | skipped
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class EventDeadLetter(Base, IdMixin):
    """Handler deliveries that exhausted their retries; reprocessed by the dead-letter job."""

    __tablename__ = "event_dead_letters"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("domain_events.id", ondelete="CASCADE"), index=True
    )
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    handler_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
