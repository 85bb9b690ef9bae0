"""
Capital ledger: commitments, calls, allocations, returns and distributions.

Every mutation runs as one unit of work through ``EventBus.commit_and_dispatch``
so the ledger rows and the event describing them commit (or roll back)
together. Each mutation also touches the owning ``Fund`` row; the fund's
version column then rejects a concurrent writer, which is retried.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import EventTypes
from lendops.domain.funds.enums import (
    CapitalCallStatus,
    CommitmentStatus,
    DistributionStatus,
    DistributionType,
    FundStatus,
    FundType,
)
from lendops.domain.funds.models import (
    CapitalCall,
    CapitalReturn,
    DistributionLine,
    Fund,
    FundCommitment,
    FundDistribution,
    FundLoanAllocation,
)
from lendops.domain.funds.services.metrics import get_fund_position
from lendops.domain.funds.services.pro_rata import compute_pro_rata_shares
from lendops.domain.loans.enums import LoanStatus
from lendops.domain.loans.models import Loan
from lendops.shared.exceptions import InsufficientCapital, NotFound, ValidationError
from lendops.shared.utils import to_money, utcnow

logger = structlog.get_logger(__name__)

AGGREGATE_TYPE = "Fund"


@dataclass(frozen=True)
class DistributionResult:
    distribution: FundDistribution
    lines: list[DistributionLine]


def _positive(amount: Decimal, what: str) -> Decimal:
    value = to_money(amount)
    if value <= 0:
        raise ValidationError(f"{what} must be greater than zero")
    return value


def _load_fund(session: Session, fund_id: uuid.UUID, *, require_active: bool = False) -> Fund:
    fund = session.get(Fund, fund_id)
    if fund is None:
        raise NotFound(f"Fund {fund_id} not found")
    if require_active and fund.status != FundStatus.active:
        raise ValidationError(f"Fund {fund_id} is {FundStatus(fund.status).value}")
    return fund


def _touch(fund: Fund, actor_id: str | None) -> None:
    fund.updated_at = utcnow()
    fund.updated_by = actor_id


def _meta(fund: Fund, actor_id: str | None) -> dict:
    return {"userId": actor_id, "organizationId": fund.organization_id}


def _active_commitments(session: Session, fund_id: uuid.UUID) -> list[FundCommitment]:
    return list(
        session.scalars(
            select(FundCommitment)
            .where(FundCommitment.fund_id == fund_id, FundCommitment.status == CommitmentStatus.active)
            .order_by(FundCommitment.commitment_date.asc(), FundCommitment.created_at.asc(), FundCommitment.id.asc())
        )
    )


def _commitments_by_lender(commitments: list[FundCommitment]) -> dict[uuid.UUID, list[FundCommitment]]:
    """Active commitments grouped per lender, lenders ordered by their earliest commitment."""
    grouped: dict[uuid.UUID, list[FundCommitment]] = {}
    for commitment in commitments:
        grouped.setdefault(commitment.lender_id, []).append(commitment)
    return grouped


# --- Fund


def create_fund(
    db: Session,
    bus: EventBus,
    *,
    organization_id: uuid.UUID,
    name: str,
    fund_type: FundType,
    total_capacity: Decimal,
    strategy: str | None = None,
    target_return: Decimal | None = None,
    management_fee_bps: int = 0,
    performance_fee_bps: int = 0,
    actor_id: str | None = None,
) -> Fund:
    capacity = _positive(total_capacity, "Fund capacity")

    def _op(session: Session) -> Fund:
        fund = Fund(
            id=uuid.uuid4(),
            organization_id=organization_id,
            name=name,
            fund_type=FundType(fund_type),
            status=FundStatus.active,
            total_capacity=capacity,
            inception_date=utcnow(),
            strategy=strategy,
            target_return=target_return,
            management_fee_bps=management_fee_bps,
            performance_fee_bps=performance_fee_bps,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(fund)
        session.flush()
        bus.publish(
            session,
            EventTypes.FUND_CREATED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "fundId": fund.id,
                "organizationId": organization_id,
                "name": name,
                "fundType": FundType(fund_type).value,
                "totalCapacity": capacity,
            },
            metadata=_meta(fund, actor_id),
        )
        return fund

    fund = bus.commit_and_dispatch(db, _op)
    logger.info("fund_created", fund_id=str(fund.id))
    return fund


def close_fund(db: Session, bus: EventBus, fund_id: uuid.UUID, *, actor_id: str | None = None) -> Fund:
    def _op(session: Session) -> Fund:
        fund = _load_fund(session, fund_id, require_active=True)
        now = utcnow()
        fund.status = FundStatus.closed
        fund.closing_date = now
        _touch(fund, actor_id)
        bus.publish(
            session,
            EventTypes.FUND_CLOSED,
            fund.id,
            AGGREGATE_TYPE,
            {"fundId": fund.id, "organizationId": fund.organization_id, "closingDate": now, "closedBy": actor_id},
            metadata=_meta(fund, actor_id),
        )
        return fund

    return bus.commit_and_dispatch(db, _op)


# --- Commitments


def add_commitment(
    db: Session,
    bus: EventBus,
    fund_id: uuid.UUID,
    lender_id: uuid.UUID,
    amount: Decimal,
    *,
    commitment_date: date | None = None,
    actor_id: str | None = None,
) -> FundCommitment:
    amount = _positive(amount, "Commitment amount")
    commitment_date = commitment_date or date.today()

    def _op(session: Session) -> FundCommitment:
        fund = _load_fund(session, fund_id, require_active=True)
        commitment = FundCommitment(
            id=uuid.uuid4(),
            fund_id=fund.id,
            lender_id=lender_id,
            committed_amount=amount,
            called_amount=Decimal("0.00"),
            distributed_amount=Decimal("0.00"),
            status=CommitmentStatus.active,
            commitment_date=commitment_date,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(commitment)
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.COMMITMENT_ADDED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "commitmentId": commitment.id,
                "fundId": fund.id,
                "lenderId": lender_id,
                "organizationId": fund.organization_id,
                "committedAmount": amount,
                "commitmentDate": commitment_date,
            },
            metadata=_meta(fund, actor_id),
        )
        return commitment

    commitment = bus.commit_and_dispatch(db, _op)
    logger.info("commitment_added", fund_id=str(fund_id), commitment_id=str(commitment.id), amount=str(amount))
    return commitment


def cancel_commitment(
    db: Session,
    bus: EventBus,
    commitment_id: uuid.UUID,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
) -> FundCommitment:
    """Cancel an active commitment that no satisfied call has drawn on yet."""

    def _op(session: Session) -> FundCommitment:
        commitment = session.get(FundCommitment, commitment_id)
        if commitment is None:
            raise NotFound(f"Commitment {commitment_id} not found")
        if commitment.status != CommitmentStatus.active:
            raise ValidationError("Only active commitments can be cancelled")
        if to_money(commitment.called_amount) > 0:
            raise ValidationError("Commitment has received capital calls and can no longer be cancelled")

        fund = _load_fund(session, commitment.fund_id)
        commitment.status = CommitmentStatus.cancelled
        commitment.cancelled_at = utcnow()
        commitment.updated_by = actor_id
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.COMMITMENT_CANCELLED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "commitmentId": commitment.id,
                "fundId": fund.id,
                "lenderId": commitment.lender_id,
                "organizationId": fund.organization_id,
                "cancelledBy": actor_id,
                "reason": reason,
            },
            metadata=_meta(fund, actor_id),
        )
        return commitment

    return bus.commit_and_dispatch(db, _op)


# --- Capital calls


def call_capital(
    db: Session,
    bus: EventBus,
    fund_id: uuid.UUID,
    call_number: int,
    amount: Decimal,
    due_date: date,
    *,
    purpose: str | None = None,
    notes: str | None = None,
    actor_id: str | None = None,
) -> CapitalCall:
    """
    Request part of the uncalled commitments.

    ``call_number`` is supplied by the caller and must be greater than every
    existing call number of the fund.
    """
    amount = _positive(amount, "Call amount")
    if call_number < 1:
        raise ValidationError("Call number must be a positive integer")

    def _op(session: Session) -> CapitalCall:
        fund = _load_fund(session, fund_id, require_active=True)
        last_number = session.scalar(
            select(func.max(CapitalCall.call_number)).where(CapitalCall.fund_id == fund.id)
        )
        if last_number is not None and call_number <= last_number:
            raise ValidationError(f"Call number must be greater than {last_number}")

        position = get_fund_position(session, fund.id)
        if amount > position.uncalled_capital:
            raise ValidationError(
                f"Call amount {amount} exceeds uncalled commitments {position.uncalled_capital}"
            )

        call = CapitalCall(
            id=uuid.uuid4(),
            fund_id=fund.id,
            call_number=call_number,
            call_amount=amount,
            due_date=due_date,
            status=CapitalCallStatus.pending,
            received_amount=Decimal("0.00"),
            purpose=purpose,
            notes=notes,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(call)
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.CAPITAL_CALLED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "callId": call.id,
                "fundId": fund.id,
                "organizationId": fund.organization_id,
                "callNumber": call_number,
                "callAmount": amount,
                "dueDate": due_date,
                "purpose": purpose,
            },
            metadata=_meta(fund, actor_id),
        )
        return call

    call = bus.commit_and_dispatch(db, _op)
    logger.info("capital_called", fund_id=str(fund_id), call_number=call_number, amount=str(amount))
    return call


def receive_capital(
    db: Session,
    bus: EventBus,
    call_id: uuid.UUID,
    *,
    received_date: date | None = None,
    actor_id: str | None = None,
) -> CapitalCall:
    """Mark a call as satisfied and spread it over the uncalled balances of the active commitments."""
    received_date = received_date or date.today()

    def _op(session: Session) -> CapitalCall:
        call = session.get(CapitalCall, call_id)
        if call is None:
            raise NotFound(f"Capital call {call_id} not found")
        if call.status == CapitalCallStatus.funded:
            raise ValidationError(f"Capital call {call.call_number} is already funded")

        fund = _load_fund(session, call.fund_id)
        commitments = _active_commitments(session, fund.id)
        if not commitments:
            raise ValidationError("Fund has no active commitments to receive capital from")

        amount = to_money(call.call_amount)
        uncalled = [(c, to_money(c.committed_amount) - to_money(c.called_amount)) for c in commitments]
        uncalled = [(c, balance) for c, balance in uncalled if balance > 0]
        remaining = sum((balance for _, balance in uncalled), Decimal("0.00"))
        if amount > remaining:
            raise ValidationError(f"Call amount {amount} exceeds uncalled commitments {remaining}")

        # Weighted by what each commitment still owes, so none is called past its commitment.
        for commitment, share in compute_pro_rata_shares(uncalled, amount):
            commitment.called_amount = to_money(commitment.called_amount) + share

        call.status = CapitalCallStatus.funded
        call.received_amount = amount
        call.funded_date = received_date
        call.updated_by = actor_id
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.CAPITAL_RECEIVED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "callId": call.id,
                "fundId": fund.id,
                "organizationId": fund.organization_id,
                "amount": amount,
                "receivedDate": received_date,
            },
            metadata=_meta(fund, actor_id),
        )
        return call

    return bus.commit_and_dispatch(db, _op)


# --- Allocations


def allocate_to_loan(
    db: Session,
    bus: EventBus,
    fund_id: uuid.UUID,
    loan_id: uuid.UUID,
    amount: Decimal,
    allocation_date: date | None = None,
    *,
    actor_id: str | None = None,
) -> FundLoanAllocation:
    """
    Deploy received capital into a loan.

    Raises ``InsufficientCapital`` when ``amount`` exceeds
    received - allocated + returned for the fund.
    """
    amount = _positive(amount, "Allocation amount")
    allocation_date = allocation_date or date.today()

    def _op(session: Session) -> FundLoanAllocation:
        fund = _load_fund(session, fund_id)
        loan = session.get(Loan, loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found")
        if loan.status == LoanStatus.rejected:
            raise ValidationError("Cannot allocate capital to a rejected loan")

        position = get_fund_position(session, fund.id)
        available = position.available_capital
        if amount > available:
            raise InsufficientCapital(amount, available)

        allocation = FundLoanAllocation(
            id=uuid.uuid4(),
            fund_id=fund.id,
            loan_id=loan.id,
            allocated_amount=amount,
            returned_amount=Decimal("0.00"),
            allocation_date=allocation_date,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(allocation)
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.CAPITAL_ALLOCATED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "allocationId": allocation.id,
                "fundId": fund.id,
                "loanId": loan.id,
                "organizationId": fund.organization_id,
                "amount": amount,
                "allocatedDate": allocation_date,
                "availableCapital": available - amount,
                "receivedCapital": position.total_received,
            },
            metadata=_meta(fund, actor_id),
        )
        return allocation

    allocation = bus.commit_and_dispatch(db, _op)
    logger.info("capital_allocated", fund_id=str(fund_id), loan_id=str(loan_id), amount=str(amount))
    return allocation


def return_from_loan(
    db: Session,
    bus: EventBus,
    allocation_id: uuid.UUID,
    amount: Decimal,
    return_date: date | None = None,
    *,
    actor_id: str | None = None,
) -> FundLoanAllocation:
    amount = _positive(amount, "Return amount")
    return_date = return_date or date.today()

    def _op(session: Session) -> FundLoanAllocation:
        allocation = session.get(FundLoanAllocation, allocation_id)
        if allocation is None:
            raise NotFound(f"Allocation {allocation_id} not found")
        outstanding = to_money(allocation.outstanding_amount)
        if amount > outstanding:
            raise ValidationError(f"Return amount {amount} exceeds outstanding balance {outstanding}")

        fund = _load_fund(session, allocation.fund_id)
        session.add(
            CapitalReturn(
                id=uuid.uuid4(),
                allocation_id=allocation.id,
                fund_id=fund.id,
                amount=amount,
                return_date=return_date,
            )
        )
        allocation.returned_amount = to_money(allocation.returned_amount) + amount
        if allocation.returned_amount >= to_money(allocation.allocated_amount):
            allocation.full_return_date = return_date
        allocation.updated_by = actor_id
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.CAPITAL_RETURNED,
            fund.id,
            AGGREGATE_TYPE,
            {
                "allocationId": allocation.id,
                "fundId": fund.id,
                "loanId": allocation.loan_id,
                "organizationId": fund.organization_id,
                "amount": amount,
                "returnedDate": return_date,
            },
            metadata=_meta(fund, actor_id),
        )
        return allocation

    return bus.commit_and_dispatch(db, _op)


# --- Distributions


def distribute(
    db: Session,
    bus: EventBus,
    fund_id: uuid.UUID,
    total_amount: Decimal,
    distribution_date: date | None = None,
    distribution_type: DistributionType = DistributionType.return_of_capital,
    *,
    notes: str | None = None,
    actor_id: str | None = None,
) -> DistributionResult:
    """
    Pay ``total_amount`` out pro-rata to each lender's active commitments.

    A lender holding several commitments gets one line weighted by their sum;
    the line amount is then spread back over those commitments. One event per call.
    """
    total = _positive(total_amount, "Distribution amount")
    distribution_date = distribution_date or date.today()
    distribution_type = DistributionType(distribution_type)

    def _op(session: Session) -> DistributionResult:
        fund = _load_fund(session, fund_id)
        commitments = _active_commitments(session, fund.id)
        if not commitments:
            raise ValidationError("Fund has no active commitments to distribute to")

        by_lender = _commitments_by_lender(commitments)
        lender_weights = [
            (lender_id, sum((to_money(c.committed_amount) for c in held), Decimal("0.00")))
            for lender_id, held in by_lender.items()
        ]
        shares = compute_pro_rata_shares(lender_weights, total)

        distribution = FundDistribution(
            id=uuid.uuid4(),
            fund_id=fund.id,
            distribution_date=distribution_date,
            total_amount=total,
            distribution_type=distribution_type,
            status=DistributionStatus.processed,
            notes=notes,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(distribution)
        lines: list[DistributionLine] = []
        for lender_id, share in shares:
            held = by_lender[lender_id]
            line = DistributionLine(
                id=uuid.uuid4(),
                distribution_id=distribution.id,
                commitment_id=held[0].id,
                lender_id=lender_id,
                amount=share,
            )
            for commitment, part in compute_pro_rata_shares([(c, to_money(c.committed_amount)) for c in held], share):
                commitment.distributed_amount = to_money(commitment.distributed_amount) + part
            session.add(line)
            lines.append(line)
        _touch(fund, actor_id)
        session.flush()
        bus.publish(
            session,
            EventTypes.DISTRIBUTION_MADE,
            fund.id,
            AGGREGATE_TYPE,
            {
                "distributionId": distribution.id,
                "fundId": fund.id,
                "organizationId": fund.organization_id,
                "totalAmount": total,
                "distributionType": distribution_type.value,
                "distributionDate": distribution_date,
                "lineCount": len(lines),
            },
            metadata=_meta(fund, actor_id),
        )
        return DistributionResult(distribution=distribution, lines=lines)

    result = bus.commit_and_dispatch(db, _op)
    logger.info("distribution_made", fund_id=str(fund_id), total=str(total), lines=len(result.lines))
    return result


# --- Reads


def get_fund(db: Session, fund_id: uuid.UUID) -> Fund:
    return _load_fund(db, fund_id)


def list_funds(db: Session, organization_id: uuid.UUID | None = None) -> list[Fund]:
    stmt = select(Fund).order_by(Fund.created_at.desc())
    if organization_id is not None:
        stmt = stmt.where(Fund.organization_id == organization_id)
    return list(db.scalars(stmt))


def list_commitments(db: Session, fund_id: uuid.UUID) -> list[FundCommitment]:
    return list(
        db.scalars(
            select(FundCommitment)
            .where(FundCommitment.fund_id == fund_id)
            .order_by(FundCommitment.commitment_date.asc(), FundCommitment.created_at.asc())
        )
    )


def list_calls(db: Session, fund_id: uuid.UUID) -> list[CapitalCall]:
    return list(db.scalars(select(CapitalCall).where(CapitalCall.fund_id == fund_id).order_by(CapitalCall.call_number)))


def list_allocations(db: Session, fund_id: uuid.UUID) -> list[FundLoanAllocation]:
    return list(
        db.scalars(
            select(FundLoanAllocation)
            .where(FundLoanAllocation.fund_id == fund_id)
            .order_by(FundLoanAllocation.allocation_date.asc(), FundLoanAllocation.created_at.asc())
        )
    )


def list_distributions(db: Session, fund_id: uuid.UUID) -> list[DistributionResult]:
    distributions = list(
        db.scalars(
            select(FundDistribution)
            .where(FundDistribution.fund_id == fund_id)
            .order_by(FundDistribution.distribution_date.desc(), FundDistribution.created_at.desc())
        )
    )
    out = []
    for d in distributions:
        lines = list(db.scalars(select(DistributionLine).where(DistributionLine.distribution_id == d.id)))
        out.append(DistributionResult(distribution=d, lines=lines))
    return out
