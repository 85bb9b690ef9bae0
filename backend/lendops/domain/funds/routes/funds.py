from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.core.events.bus import EventBus
from lendops.core.events.registry import get_event_bus
from lendops.domain.funds.schemas.funds import (
    AllocationCreate,
    AllocationOut,
    CapitalCallCreate,
    CapitalCallOut,
    CapitalReceive,
    CapitalReturnCreate,
    CommitmentCancel,
    CommitmentCreate,
    CommitmentOut,
    DistributionCreate,
    DistributionLineOut,
    DistributionOut,
    FundCreate,
    FundOut,
    FundPositionOut,
)
from lendops.domain.funds.services import ledger
from lendops.domain.funds.services.metrics import get_fund_metrics


router = APIRouter(tags=["Funds"])


def _distribution_out(result: ledger.DistributionResult) -> DistributionOut:
    d = result.distribution
    return DistributionOut(
        id=d.id,
        fund_id=d.fund_id,
        distribution_date=d.distribution_date,
        total_amount=d.total_amount,
        distribution_type=d.distribution_type,
        status=d.status,
        lines=[DistributionLineOut.model_validate(line) for line in result.lines],
    )


@router.post("/funds", response_model=FundOut, status_code=status.HTTP_201_CREATED)
def create_fund(payload: FundCreate, db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    return ledger.create_fund(db, bus, **payload.model_dump())


@router.get("/funds", response_model=list[FundOut])
def list_funds(organization_id: uuid.UUID | None = None, db: Session = Depends(get_db)):
    return ledger.list_funds(db, organization_id)


@router.get("/funds/{fund_id}", response_model=FundOut)
def get_fund(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    return ledger.get_fund(db, fund_id)


@router.post("/funds/{fund_id}/close", response_model=FundOut)
def close_fund(
    fund_id: uuid.UUID,
    actor_id: str | None = None,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.close_fund(db, bus, fund_id, actor_id=actor_id)


@router.get("/funds/{fund_id}/position", response_model=FundPositionOut)
def fund_position(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    position, metrics = get_fund_metrics(db, fund_id)
    return FundPositionOut(
        fund_id=position.fund_id,
        total_capacity=position.total_capacity,
        total_committed=position.total_committed,
        total_called=position.total_called,
        total_received=position.total_received,
        total_allocated=position.total_allocated,
        total_returned=position.total_returned,
        total_distributed=position.total_distributed,
        outstanding_deployed=position.outstanding_deployed,
        available_capital=position.available_capital,
        uncalled_capital=position.uncalled_capital,
        deployment_rate=metrics.deployment_rate,
        return_rate=metrics.return_rate,
        capacity_utilization=metrics.capacity_utilization,
        moic=metrics.moic,
        irr=metrics.irr,
    )


@router.post("/funds/{fund_id}/commitments", response_model=CommitmentOut, status_code=status.HTTP_201_CREATED)
def add_commitment(
    fund_id: uuid.UUID,
    payload: CommitmentCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.add_commitment(
        db,
        bus,
        fund_id,
        payload.lender_id,
        payload.amount,
        commitment_date=payload.commitment_date,
        actor_id=payload.actor_id,
    )


@router.get("/funds/{fund_id}/commitments", response_model=list[CommitmentOut])
def list_commitments(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    return ledger.list_commitments(db, fund_id)


@router.post("/commitments/{commitment_id}/cancel", response_model=CommitmentOut)
def cancel_commitment(
    commitment_id: uuid.UUID,
    payload: CommitmentCancel,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.cancel_commitment(db, bus, commitment_id, reason=payload.reason, actor_id=payload.actor_id)


@router.post("/funds/{fund_id}/calls", response_model=CapitalCallOut, status_code=status.HTTP_201_CREATED)
def call_capital(
    fund_id: uuid.UUID,
    payload: CapitalCallCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.call_capital(
        db,
        bus,
        fund_id,
        payload.call_number,
        payload.amount,
        payload.due_date,
        purpose=payload.purpose,
        notes=payload.notes,
        actor_id=payload.actor_id,
    )


@router.get("/funds/{fund_id}/calls", response_model=list[CapitalCallOut])
def list_calls(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    return ledger.list_calls(db, fund_id)


@router.post("/calls/{call_id}/receive", response_model=CapitalCallOut)
def receive_capital(
    call_id: uuid.UUID,
    payload: CapitalReceive,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.receive_capital(db, bus, call_id, received_date=payload.received_date, actor_id=payload.actor_id)


@router.post("/funds/{fund_id}/allocations", response_model=AllocationOut, status_code=status.HTTP_201_CREATED)
def allocate_to_loan(
    fund_id: uuid.UUID,
    payload: AllocationCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.allocate_to_loan(
        db, bus, fund_id, payload.loan_id, payload.amount, payload.allocation_date, actor_id=payload.actor_id
    )


@router.get("/funds/{fund_id}/allocations", response_model=list[AllocationOut])
def list_allocations(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    return ledger.list_allocations(db, fund_id)


@router.post("/allocations/{allocation_id}/returns", response_model=AllocationOut)
def return_from_loan(
    allocation_id: uuid.UUID,
    payload: CapitalReturnCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return ledger.return_from_loan(db, bus, allocation_id, payload.amount, payload.return_date, actor_id=payload.actor_id)


@router.post("/funds/{fund_id}/distributions", response_model=DistributionOut, status_code=status.HTTP_201_CREATED)
def distribute(
    fund_id: uuid.UUID,
    payload: DistributionCreate,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    result = ledger.distribute(
        db,
        bus,
        fund_id,
        payload.total_amount,
        payload.distribution_date,
        payload.distribution_type,
        notes=payload.notes,
        actor_id=payload.actor_id,
    )
    return _distribution_out(result)


@router.get("/funds/{fund_id}/distributions", response_model=list[DistributionOut])
def list_distributions(fund_id: uuid.UUID, db: Session = Depends(get_db)):
    return [_distribution_out(r) for r in ledger.list_distributions(db, fund_id)]
