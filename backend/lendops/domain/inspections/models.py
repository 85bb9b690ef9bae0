from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin, OrganizationScopedMixin
from lendops.domain.inspections.enums import InspectionStatus


class Inspection(Base, IdMixin, OrganizationScopedMixin, AuditMetaMixin):
    """Site inspection tied to a loan and, for construction draws, to the draw it gates."""

    __tablename__ = "inspections"

    loan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("loans.id"), index=True)
    draw_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    completed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[InspectionStatus] = mapped_column(
        Enum(InspectionStatus, name="inspection_status_enum"),
        nullable=False,
        default=InspectionStatus.scheduled,
    )
    findings: Mapped[str | None] = mapped_column(Text, nullable=True)

    due_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    overdue_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_inspections_status_scheduled", "status", "scheduled_date"),)
