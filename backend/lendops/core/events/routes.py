from __future__ import annotations

from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.db.session import get_db
from lendops.core.events.bus import EventBus
from lendops.core.events.models import EventDeadLetter
from lendops.core.events.registry import get_event_bus
from lendops.core.events.schemas import DeadLetterOut, DomainEventOut, JobCountOut, ReplayOut, ReplayRequest
from lendops.core.events.types import DomainEvent
from lendops.shared.cancellation import CancellationToken


router = APIRouter(prefix="/events", tags=["Events"])


def _event_out(event: DomainEvent) -> DomainEventOut:
    return DomainEventOut(
        id=event.id,
        event_type=event.event_type,
        event_version=event.event_version,
        aggregate_id=event.aggregate_id,
        aggregate_type=event.aggregate_type,
        sequence_number=event.sequence_number,
        payload=event.payload,
        metadata=event.metadata.model_dump(mode="json", by_alias=True, exclude_none=True),
        occurred_at=event.occurred_at,
    )


@router.get("/recent", response_model=list[DomainEventOut])
def recent_events(
    since: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    event_type: list[str] | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return [_event_out(e) for e in EventBus.recent_events(db, since=since, limit=limit, event_types=event_type)]


@router.get("/dead-letters", response_model=list[DeadLetterOut])
def list_dead_letters(
    include_resolved: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    stmt = select(EventDeadLetter).order_by(EventDeadLetter.created_at.desc()).limit(limit)
    if not include_resolved:
        stmt = stmt.where(EventDeadLetter.resolved_at.is_(None))
    return list(db.scalars(stmt))


@router.post("/dead-letters/reprocess", response_model=JobCountOut)
def reprocess_dead_letters(limit: int = Query(default=100, ge=1, le=1000), bus: EventBus = Depends(get_event_bus)):
    return JobCountOut(count=bus.reprocess_dead_letters(limit=limit))


@router.post("/dispatch-pending", response_model=JobCountOut)
def dispatch_pending(limit: int = Query(default=100, ge=1, le=1000), bus: EventBus = Depends(get_event_bus)):
    return JobCountOut(count=bus.dispatch_pending(limit=limit))


@router.get("/{aggregate_id}", response_model=list[DomainEventOut])
def event_history(
    aggregate_id: str,
    aggregate_type: str | None = None,
    db: Session = Depends(get_db),
):
    return [_event_out(e) for e in EventBus.get_event_history(db, aggregate_id, aggregate_type)]


@router.post("/{aggregate_id}/replay", response_model=ReplayOut)
def replay_aggregate(
    aggregate_id: str,
    payload: ReplayRequest,
    bus: EventBus = Depends(get_event_bus),
):
    token = CancellationToken(deadline_seconds=payload.deadline_seconds)
    result = bus.replay(aggregate_id, aggregate_type=payload.aggregate_type, cancel_token=token)
    return ReplayOut(**asdict(result))
