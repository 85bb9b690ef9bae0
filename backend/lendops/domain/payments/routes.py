from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.core.events.bus import EventBus
from lendops.core.events.registry import get_event_bus
from lendops.domain.payments import service
from lendops.domain.payments.schemas import PaymentCreate, PaymentFailed, PaymentOut, PaymentReceived


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def schedule_payment(payload: PaymentCreate, db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    return service.schedule_payment(db, bus, payload.loan_id, payload.amount, payload.due_date, actor_id=payload.actor_id)


@router.post("/{payment_id}/received", response_model=PaymentOut)
def payment_received(
    payment_id: uuid.UUID,
    payload: PaymentReceived,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return service.record_payment_received(db, bus, payment_id, payload.received_date, actor_id=payload.actor_id)


@router.post("/{payment_id}/failed", response_model=PaymentOut)
def payment_failed(
    payment_id: uuid.UUID,
    payload: PaymentFailed,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return service.record_payment_failed(db, bus, payment_id, payload.reason, actor_id=payload.actor_id)
