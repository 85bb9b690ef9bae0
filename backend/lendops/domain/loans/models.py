from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Enum, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from lendops.core.db.base import AuditMetaMixin, Base, IdMixin, OrganizationScopedMixin
from lendops.domain.loans.enums import LoanStatus


class Loan(Base, IdMixin, OrganizationScopedMixin, AuditMetaMixin):
    """
    A loan moving through origination. Status changes go through the state
    machine only; the version column makes concurrent transitions on the same
    loan fail fast instead of silently overwriting each other.
    """

    __tablename__ = "loans"

    borrower_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    principal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    term_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    collateral_value: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    status: Mapped[LoanStatus] = mapped_column(
        Enum(LoanStatus, name="loan_status_enum"),
        nullable=False,
        default=LoanStatus.draft,
        index=True,
    )
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delinquent_since: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def ltv(self) -> Decimal | None:
        if not self.collateral_value:
            return None
        return self.principal / self.collateral_value
