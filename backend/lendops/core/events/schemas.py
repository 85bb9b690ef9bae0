import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DomainEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    event_version: str
    aggregate_id: str
    aggregate_type: str
    sequence_number: int
    payload: dict[str, Any]
    metadata: dict[str, Any]
    occurred_at: datetime


class ReplayRequest(BaseModel):
    aggregate_type: str | None = None
    deadline_seconds: float | None = Field(default=None, gt=0)


class ProcessingResultOut(BaseModel):
    event_id: uuid.UUID
    handler_name: str
    status: str
    attempts: int
    error: str | None = None


class ReplayOut(BaseModel):
    aggregate_id: str
    aggregate_type: str | None
    events_total: int
    events_replayed: int
    cancelled: bool
    failures: list[ProcessingResultOut]


class DeadLetterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_id: uuid.UUID
    event_type: str
    handler_name: str
    attempts: int
    error: str | None
    created_at: datetime
    resolved_at: datetime | None


class JobCountOut(BaseModel):
    count: int
