from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin, OrganizationScopedMixin
from lendops.domain.funds.enums import FundStatus, FundType


class Fund(Base, IdMixin, OrganizationScopedMixin, AuditMetaMixin):
    """
    Investment vehicle that receives lender commitments and deploys called
    capital into loans.

    Totals (committed, deployed, returned) are NOT stored here; they are
    derived from the ledger tables so they can never drift. Every ledger
    mutation touches the fund row, which bumps ``version`` and serializes
    concurrent writers on the same fund.
    """

    __tablename__ = "funds"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fund_type: Mapped[FundType] = mapped_column(Enum(FundType, name="fund_type_enum"), nullable=False, index=True)
    status: Mapped[FundStatus] = mapped_column(
        Enum(FundStatus, name="fund_status_enum"),
        nullable=False,
        default=FundStatus.active,
        index=True,
    )

    total_capacity: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    inception_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    closing_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    strategy: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_return: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    management_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    performance_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
