"""Derived fund figures. Nothing here is stored; all of it is recomputed from ledger rows."""

from __future__ import annotations

import math
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lendops.domain.funds.enums import CapitalCallStatus, CommitmentStatus
from lendops.domain.funds.models import (
    CapitalCall,
    CapitalReturn,
    Fund,
    FundCommitment,
    FundDistribution,
    FundLoanAllocation,
)
from lendops.shared.exceptions import NotFound
from lendops.shared.utils import to_money, to_ratio

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class FundPosition:
    fund_id: uuid.UUID
    total_capacity: Decimal
    total_committed: Decimal
    total_called: Decimal
    total_received: Decimal
    total_allocated: Decimal
    total_returned: Decimal
    total_distributed: Decimal

    @property
    def outstanding_deployed(self) -> Decimal:
        return self.total_allocated - self.total_returned

    @property
    def available_capital(self) -> Decimal:
        return self.total_received - self.total_allocated + self.total_returned

    @property
    def uncalled_capital(self) -> Decimal:
        return max(self.total_committed - self.total_called, ZERO)


@dataclass(frozen=True)
class FundMetrics:
    deployment_rate: Decimal
    return_rate: Decimal
    capacity_utilization: Decimal
    moic: Decimal | None
    irr: float | None = None


def safe_ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator to 4 places; a zero denominator yields 0."""
    if not denominator:
        return to_ratio(0)
    return to_ratio(Decimal(numerator) / Decimal(denominator))


def compute_fund_metrics(position: FundPosition, irr: float | None = None) -> FundMetrics:
    """
    Ratios over a fund position. ``return_rate`` is principal repaid over
    capital deployed; ``moic`` values the fund at what lenders have been paid
    plus what is still deployed at cost, over capital deployed.
    """
    return FundMetrics(
        deployment_rate=safe_ratio(position.total_allocated, position.total_committed),
        return_rate=safe_ratio(position.total_returned, position.total_allocated),
        capacity_utilization=safe_ratio(position.total_committed, position.total_capacity),
        moic=safe_ratio(position.total_distributed + position.outstanding_deployed, position.total_allocated)
        if position.total_allocated
        else None,
        irr=irr,
    )


def _sum(db: Session, column, *where) -> Decimal:
    return to_money(db.scalar(select(func.coalesce(func.sum(column), 0)).where(*where)))


def get_fund_position(db: Session, fund_id: uuid.UUID) -> FundPosition:
    fund = db.get(Fund, fund_id)
    if fund is None:
        raise NotFound(f"Fund {fund_id} not found")

    active = (FundCommitment.fund_id == fund_id, FundCommitment.status == CommitmentStatus.active)
    return FundPosition(
        fund_id=fund_id,
        total_capacity=to_money(fund.total_capacity),
        total_committed=_sum(db, FundCommitment.committed_amount, *active),
        total_called=_sum(db, CapitalCall.call_amount, CapitalCall.fund_id == fund_id),
        total_received=_sum(
            db,
            CapitalCall.received_amount,
            CapitalCall.fund_id == fund_id,
            CapitalCall.status == CapitalCallStatus.funded,
        ),
        total_allocated=_sum(db, FundLoanAllocation.allocated_amount, FundLoanAllocation.fund_id == fund_id),
        total_returned=_sum(db, CapitalReturn.amount, CapitalReturn.fund_id == fund_id),
        total_distributed=_sum(db, FundDistribution.total_amount, FundDistribution.fund_id == fund_id),
    )


# --- IRR


def _npv(flows: Sequence[tuple[float, float]], rate: float) -> float:
    return sum(amount / (1 + rate) ** years for years, amount in flows)


def _npv_derivative(flows: Sequence[tuple[float, float]], rate: float) -> float:
    return sum(-years * amount / (1 + rate) ** (years + 1) for years, amount in flows)


def compute_irr(
    cash_flows: Iterable[tuple[date, Decimal]],
    *,
    guess: float = 0.1,
    tolerance: float = 1e-6,
    max_iterations: int = 100,
) -> float | None:
    """
    Annualised internal rate of return via Newton-Raphson.

    ``cash_flows`` are (date, amount) pairs with outflows negative (capital
    deployed) and inflows positive (capital returned). Time is measured in
    365-day years from the first flow. Returns ``None`` when there are fewer
    than two flows, no sign change, or the iteration leaves (-0.99, 10].
    """
    ordered = sorted(cash_flows, key=lambda cf: cf[0])
    if len(ordered) < 2:
        return None
    amounts = [float(a) for _, a in ordered]
    if not (any(a < 0 for a in amounts) and any(a > 0 for a in amounts)):
        return None

    start = ordered[0][0]
    flows = [((d - start).days / 365.0, a) for (d, _), a in zip(ordered, amounts)]

    rate = guess
    for _ in range(max_iterations):
        npv = _npv(flows, rate)
        if abs(npv) < tolerance:
            break
        slope = _npv_derivative(flows, rate)
        if abs(slope) < 1e-10:
            rate += 0.01
            continue
        new_rate = rate - npv / slope
        if abs(new_rate - rate) < tolerance:
            rate = new_rate
            break
        rate = new_rate
        if rate > 10 or rate < -0.99 or math.isnan(rate):
            return None
    return rate


def fund_cash_flows(db: Session, fund_id: uuid.UUID) -> list[tuple[date, Decimal]]:
    """Allocations as outflows, capital returns as inflows."""
    flows: list[tuple[date, Decimal]] = [
        (d, -to_money(a))
        for d, a in db.execute(
            select(FundLoanAllocation.allocation_date, FundLoanAllocation.allocated_amount).where(
                FundLoanAllocation.fund_id == fund_id
            )
        )
    ]
    flows.extend(
        (d, to_money(a))
        for d, a in db.execute(
            select(CapitalReturn.return_date, CapitalReturn.amount).where(CapitalReturn.fund_id == fund_id)
        )
    )
    return flows


def get_fund_metrics(db: Session, fund_id: uuid.UUID) -> tuple[FundPosition, FundMetrics]:
    position = get_fund_position(db, fund_id)
    irr = compute_irr(fund_cash_flows(db, fund_id))
    return position, compute_fund_metrics(position, irr=irr)
