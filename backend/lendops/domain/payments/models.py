from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin, OrganizationScopedMixin
from lendops.domain.payments.enums import PaymentStatus


class Payment(Base, IdMixin, OrganizationScopedMixin, AuditMetaMixin):
    """A scheduled borrower payment. ``late_notified_at`` makes the late scan fire once per payment."""

    __tablename__ = "payments"

    loan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("loans.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    received_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status_enum"),
        nullable=False,
        default=PaymentStatus.pending,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    late_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Set on rows generated from a Loan.Funded event; one row per installment.
    source_event_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_payments_status_due", "status", "due_date"),
        UniqueConstraint("source_event_id", "installment_number", name="uq_payments_source_event_installment"),
    )
