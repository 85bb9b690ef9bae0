from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin
from lendops.domain.funds.enums import CommitmentStatus


class FundCommitment(Base, IdMixin, AuditMetaMixin):
    """
    A lender's promise of capital to one fund.

    ``called_amount`` grows as capital calls are received and is spread
    pro-rata over the active commitments at receipt time. A commitment with
    any satisfied call against it can no longer be cancelled.
    """

    __tablename__ = "fund_commitments"

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("funds.id", ondelete="CASCADE"), index=True
    )
    lender_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True)

    committed_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    called_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    distributed_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))

    status: Mapped[CommitmentStatus] = mapped_column(
        Enum(CommitmentStatus, name="commitment_status_enum"),
        nullable=False,
        default=CommitmentStatus.active,
    )
    commitment_date: Mapped[date] = mapped_column(Date, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_fund_commitments_fund_status", "fund_id", "status"),)
