from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Enum, ForeignKey, Numeric, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin
from lendops.domain.funds.enums import DistributionStatus, DistributionType


class FundDistribution(Base, IdMixin, AuditMetaMixin):
    __tablename__ = "fund_distributions"

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("funds.id", ondelete="CASCADE"), index=True
    )
    distribution_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    distribution_type: Mapped[DistributionType] = mapped_column(
        Enum(DistributionType, name="distribution_type_enum"),
        nullable=False,
    )
    status: Mapped[DistributionStatus] = mapped_column(
        Enum(DistributionStatus, name="distribution_status_enum"),
        nullable=False,
        default=DistributionStatus.processed,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class DistributionLine(Base, IdMixin):
    """One lender's pro-rata share of a distribution. Lines of a distribution sum exactly to its total."""

    __tablename__ = "distribution_lines"

    distribution_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("fund_distributions.id", ondelete="CASCADE"), index=True
    )
    # The lender's earliest active commitment in the fund.
    commitment_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("fund_commitments.id"))
    lender_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
