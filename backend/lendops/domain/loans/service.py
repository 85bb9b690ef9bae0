from __future__ import annotations

import uuid
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import EventTypes
from lendops.domain.loans.enums import LoanStatus
from lendops.domain.loans.models import Loan
from lendops.domain.loans.state_machine import can_transition
from lendops.shared.exceptions import InvalidTransition, NotFound, ValidationError
from lendops.shared.utils import to_money, utcnow

logger = structlog.get_logger(__name__)

AGGREGATE_TYPE = "Loan"


def get_loan(db: Session, loan_id: uuid.UUID) -> Loan:
    loan = db.get(Loan, loan_id)
    if loan is None:
        raise NotFound(f"Loan {loan_id} not found")
    return loan


def list_loans(
    db: Session,
    *,
    organization_id: uuid.UUID | None = None,
    status: LoanStatus | None = None,
    limit: int = 100,
) -> list[Loan]:
    stmt = select(Loan).order_by(Loan.created_at.desc())
    if organization_id is not None:
        stmt = stmt.where(Loan.organization_id == organization_id)
    if status is not None:
        stmt = stmt.where(Loan.status == status)
    return list(db.scalars(stmt.limit(limit)))


def create_loan(
    db: Session,
    bus: EventBus,
    *,
    organization_id: uuid.UUID,
    principal: Decimal,
    interest_rate: Decimal | None = None,
    term_months: int | None = None,
    collateral_value: Decimal | None = None,
    borrower_name: str | None = None,
    actor_id: str | None = None,
) -> Loan:
    principal = to_money(principal)
    if principal <= 0:
        raise ValidationError("Loan principal must be positive")

    def _op(session: Session) -> Loan:
        loan = Loan(
            id=uuid.uuid4(),
            organization_id=organization_id,
            borrower_name=borrower_name,
            principal=principal,
            interest_rate=interest_rate,
            term_months=term_months,
            collateral_value=to_money(collateral_value) if collateral_value is not None else None,
            status=LoanStatus.draft,
            status_changed_at=utcnow(),
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(loan)
        session.flush()
        bus.publish(
            session,
            EventTypes.LOAN_CREATED,
            loan.id,
            AGGREGATE_TYPE,
            {
                "loanId": loan.id,
                "organizationId": organization_id,
                "principal": principal,
                "rate": interest_rate,
                "termMonths": term_months,
                "createdBy": actor_id,
            },
            metadata={"userId": actor_id, "organizationId": organization_id},
        )
        return loan

    loan = bus.commit_and_dispatch(db, _op)
    logger.info("loan_created", loan_id=str(loan.id), organization_id=str(organization_id))
    return loan


def transition(
    db: Session,
    bus: EventBus,
    loan_id: uuid.UUID,
    target: LoanStatus | str,
    *,
    actor_id: str | None = None,
    reason: str | None = None,
) -> Loan:
    """
    Move a loan to ``target``.

    Raises ``NotFound`` for an unknown loan and ``InvalidTransition`` (with
    nothing written) when the adjacency table does not allow the move.
    """
    target = LoanStatus(target)

    def _op(session: Session) -> Loan:
        loan = get_loan(session, loan_id)
        previous = LoanStatus(loan.status)
        if not can_transition(previous, target):
            raise InvalidTransition(previous.value, target.value)

        now = utcnow()
        loan.status = target
        loan.status_changed_at = now
        loan.updated_by = actor_id
        if target == LoanStatus.funded:
            loan.funded_at = now
        session.flush()

        meta = {"userId": actor_id, "organizationId": loan.organization_id}
        changed = bus.publish(
            session,
            EventTypes.LOAN_STATUS_CHANGED,
            loan.id,
            AGGREGATE_TYPE,
            {
                "loanId": loan.id,
                "organizationId": loan.organization_id,
                "previousStatus": previous.value,
                "newStatus": target.value,
                "changedBy": actor_id,
                "reason": reason,
            },
            metadata=meta,
        )
        if target == LoanStatus.funded:
            bus.publish(
                session,
                EventTypes.LOAN_FUNDED,
                loan.id,
                AGGREGATE_TYPE,
                {
                    "loanId": loan.id,
                    "organizationId": loan.organization_id,
                    "principal": loan.principal,
                    "fundedDate": now,
                    "fundedBy": actor_id,
                },
                metadata=meta,
                causation_id=str(changed.id),
            )
        return loan

    loan = bus.commit_and_dispatch(db, _op)
    logger.info("loan_status_changed", loan_id=str(loan_id), status=target.value)
    return loan
