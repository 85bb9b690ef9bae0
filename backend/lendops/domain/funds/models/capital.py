from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import Date, Enum, ForeignKey, Integer, Numeric, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin
from lendops.domain.funds.enums import CapitalCallStatus


class CapitalCall(Base, IdMixin, AuditMetaMixin):
    __tablename__ = "capital_calls"

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("funds.id", ondelete="CASCADE"), index=True
    )
    call_number: Mapped[int] = mapped_column(Integer, nullable=False)
    call_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    status: Mapped[CapitalCallStatus] = mapped_column(
        Enum(CapitalCallStatus, name="capital_call_status_enum"),
        nullable=False,
        default=CapitalCallStatus.pending,
    )
    received_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    funded_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("fund_id", "call_number", name="uq_capital_calls_fund_call_number"),)


class FundLoanAllocation(Base, IdMixin, AuditMetaMixin):
    """Capital deployed from a fund into one loan. Outstanding = allocated - returned."""

    __tablename__ = "fund_loan_allocations"

    fund_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("funds.id", ondelete="CASCADE"), index=True
    )
    loan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("loans.id"), index=True)

    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    returned_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False, default=Decimal("0"))

    allocation_date: Mapped[date] = mapped_column(Date, nullable=False)
    full_return_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    @property
    def outstanding_amount(self) -> Decimal:
        return Decimal(self.allocated_amount) - Decimal(self.returned_amount or 0)


class CapitalReturn(Base, IdMixin):
    """One repayment of allocated capital back into the fund."""

    __tablename__ = "capital_returns"

    allocation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("fund_loan_allocations.id", ondelete="CASCADE"), index=True
    )
    fund_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("funds.id"), index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    return_date: Mapped[date] = mapped_column(Date, nullable=False)
