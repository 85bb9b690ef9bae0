from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.core.events.bus import EventBus
from lendops.core.events.registry import get_event_bus
from lendops.domain.inspections import service
from lendops.domain.inspections.schemas import InspectionComplete, InspectionCreate, InspectionOut


router = APIRouter(prefix="/inspections", tags=["Inspections"])


@router.post("", response_model=InspectionOut, status_code=status.HTTP_201_CREATED)
def schedule_inspection(payload: InspectionCreate, db: Session = Depends(get_db), bus: EventBus = Depends(get_event_bus)):
    return service.schedule_inspection(
        db, bus, payload.loan_id, payload.scheduled_date, draw_id=payload.draw_id, actor_id=payload.actor_id
    )


@router.post("/{inspection_id}/complete", response_model=InspectionOut)
def complete_inspection(
    inspection_id: uuid.UUID,
    payload: InspectionComplete,
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
):
    return service.complete_inspection(
        db, bus, inspection_id, payload.completed_date, findings=payload.findings, actor_id=payload.actor_id
    )
