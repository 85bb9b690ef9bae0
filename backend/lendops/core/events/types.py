"""Domain event types shared by publishers and subscribers."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from lendops.core.events.payloads import EventPayload


class EventTypes:
    """Centralized event type strings to avoid typos."""

    # Loan
    LOAN_CREATED = "Loan.Created"
    LOAN_FUNDED = "Loan.Funded"
    LOAN_STATUS_CHANGED = "Loan.StatusChanged"
    LOAN_UPDATED = "Loan.Updated"
    LOAN_DELINQUENT = "Loan.Delinquent"

    # Payment
    PAYMENT_SCHEDULED = "Payment.Scheduled"
    PAYMENT_RECEIVED = "Payment.Received"
    PAYMENT_PROCESSED = "Payment.Processed"
    PAYMENT_FAILED = "Payment.Failed"
    PAYMENT_LATE = "Payment.Late"

    # Draw
    DRAW_REQUESTED = "Draw.Requested"
    DRAW_APPROVED = "Draw.Approved"
    DRAW_REJECTED = "Draw.Rejected"
    DRAW_DISBURSED = "Draw.Disbursed"
    DRAW_STATUS_CHANGED = "Draw.StatusChanged"
    DRAW_OVERDUE = "Draw.Overdue"

    # Inspection
    INSPECTION_SCHEDULED = "Inspection.Scheduled"
    INSPECTION_DUE = "Inspection.Due"
    INSPECTION_OVERDUE = "Inspection.Overdue"
    INSPECTION_COMPLETED = "Inspection.Completed"

    # Compliance
    DOCUMENT_GENERATED = "Compliance.DocumentGenerated"
    DOCUMENT_SIGNED = "Compliance.DocumentSigned"

    # Fund / capital
    FUND_CREATED = "Fund.Created"
    FUND_UPDATED = "Fund.Updated"
    FUND_CLOSED = "Fund.Closed"
    COMMITMENT_ADDED = "Fund.CommitmentAdded"
    COMMITMENT_CANCELLED = "Fund.CommitmentCancelled"
    COMMITMENT_ACTIVATED = "Commitment.Activated"
    CAPITAL_CALLED = "Fund.CapitalCalled"
    CAPITAL_RECEIVED = "Fund.CapitalReceived"
    CAPITAL_ALLOCATED = "Fund.CapitalAllocated"
    CAPITAL_RETURNED = "Fund.CapitalReturned"
    DISTRIBUTION_MADE = "Fund.DistributionMade"
    DISTRIBUTION_POSTED = "Distribution.Posted"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True)


class EventMetadata(_WireModel):
    """Context about who/what caused an event. Unknown keys are kept as extras."""

    user_id: str | None = None
    organization_id: str | None = None
    correlation_id: str | None = None
    causation_id: str | None = None
    source: str | None = None


class DomainEvent(_WireModel):
    """Immutable view of a persisted event, as delivered to handlers."""

    id: uuid.UUID
    event_type: str
    event_version: str = "1.0"
    aggregate_id: str
    aggregate_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata = Field(default_factory=EventMetadata)
    sequence_number: int
    occurred_at: datetime

    @property
    def correlation_id(self) -> str | None:
        return self.metadata.correlation_id

    @property
    def causation_id(self) -> str | None:
        return self.metadata.causation_id

    def typed_payload(self) -> EventPayload:
        from lendops.core.events.payloads import parse_payload

        return parse_payload(self.event_type, self.payload)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "DomainEvent":
        return cls.model_validate(data)

    @classmethod
    def from_record(cls, record) -> "DomainEvent":
        metadata = dict(record.event_metadata or {})
        if record.correlation_id:
            metadata.setdefault("correlationId", record.correlation_id)
        if record.causation_id:
            metadata.setdefault("causationId", record.causation_id)
        return cls(
            id=record.id,
            event_type=record.event_type,
            event_version=record.event_version,
            aggregate_id=record.aggregate_id,
            aggregate_type=record.aggregate_type,
            payload=dict(record.payload or {}),
            metadata=EventMetadata.model_validate(metadata),
            sequence_number=record.sequence_number,
            occurred_at=record.occurred_at,
        )


EventHandler = Callable[[Session, DomainEvent], None]


@dataclass(frozen=True)
class EventHandlerRegistration:
    handler_name: str
    event_type: str
    handler: EventHandler
    priority: int = 100
    is_enabled: bool = True


@dataclass(frozen=True)
class EventProcessingResult:
    event_id: uuid.UUID
    handler_name: str
    status: Literal["success", "failure", "skipped"]
    attempts: int = 0
    execution_time_ms: int | None = None
    error: str | None = None
