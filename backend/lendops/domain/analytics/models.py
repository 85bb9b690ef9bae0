from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import Base, IdMixin


class SnapshotMixin(IdMixin):
    """One row per calendar date; recomputation overwrites the row in place."""

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True, index=True)


class LoanSnapshot(Base, SnapshotMixin):
    __tablename__ = "loan_snapshots"

    active_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pipeline_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delinquent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rejected_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_principal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    avg_ltv: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)


class FundSnapshot(Base, SnapshotMixin):
    __tablename__ = "fund_snapshots"

    active_fund_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_commitments: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    capital_received: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    capital_deployed: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    capital_returned: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    capital_distributed: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    available_capital: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    deployment_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))


class PaymentSnapshot(Base, SnapshotMixin):
    __tablename__ = "payment_snapshots"

    amount_received: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    amount_scheduled: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    late_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_collection_days: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)


class InspectionSnapshot(Base, SnapshotMixin):
    __tablename__ = "inspection_snapshots"

    scheduled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    overdue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_completion_days: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
