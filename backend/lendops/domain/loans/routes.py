from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.core.events.bus import EventBus
from lendops.core.events.registry import get_event_bus
from lendops.domain.loans import service
from lendops.domain.loans.enums import LoanStatus
from lendops.domain.loans.schemas import LoanCreate, LoanOut, LoanTransitionRequest, NextStatesOut
from lendops.domain.loans.state_machine import get_next_states, get_status_label


router = APIRouter(prefix="/loans", tags=["Loans"])


@router.post("", response_model=LoanOut, status_code=status.HTTP_201_CREATED)
def create_loan(payload: LoanCreate, db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    return service.create_loan(db, bus, **payload.model_dump())


@router.get("", response_model=list[LoanOut])
def list_loans(
    organization_id: uuid.UUID | None = None,
    status_filter: LoanStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return service.list_loans(db, organization_id=organization_id, status=status_filter, limit=limit)


@router.get("/{loan_id}", response_model=LoanOut)
def get_loan(loan_id: uuid.UUID, db: Session = Depends(get_db)):
    return service.get_loan(db, loan_id)


@router.get("/{loan_id}/next-states", response_model=NextStatesOut)
def next_states(loan_id: uuid.UUID, db: Session = Depends(get_db)):
    loan = service.get_loan(db, loan_id)
    return NextStatesOut(status=loan.status, label=get_status_label(loan.status), next_states=get_next_states(loan.status))


@router.post("/{loan_id}/transition", response_model=LoanOut)
def transition_loan(
    loan_id: uuid.UUID,
    payload: LoanTransitionRequest,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return service.transition(
        db,
        bus,
        loan_id,
        payload.target_status,
        actor_id=payload.actor_id,
        reason=payload.reason,
    )
