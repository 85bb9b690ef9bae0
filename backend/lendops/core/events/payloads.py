"""
Typed payloads per event type.

Payloads travel as JSON objects with camelCase keys. Each known event type
maps to one model; anything else parses to ``UnknownPayload`` which handlers
must ignore.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from lendops.core.events.types import EventTypes


class EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow", frozen=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UnknownPayload(EventPayload):
    """Catch-all variant for event types without a registered shape."""


# --- Loan


class LoanCreatedPayload(EventPayload):
    loan_id: str
    organization_id: str
    principal: Decimal
    rate: Decimal | None = None
    term_months: int | None = None
    created_by: str | None = None


class LoanStatusChangedPayload(EventPayload):
    loan_id: str
    organization_id: str
    previous_status: str
    new_status: str
    changed_by: str | None = None
    reason: str | None = None


class LoanFundedPayload(EventPayload):
    loan_id: str
    organization_id: str
    principal: Decimal
    funded_date: datetime
    funded_by: str | None = None


class LoanDelinquentPayload(EventPayload):
    loan_id: str
    organization_id: str
    days_late: int
    oldest_payment_id: str | None = None


# --- Payment


class PaymentProcessedPayload(EventPayload):
    payment_id: str
    loan_id: str
    organization_id: str
    amount: Decimal
    processed_date: date


class PaymentFailedPayload(EventPayload):
    payment_id: str
    loan_id: str
    organization_id: str
    amount: Decimal
    reason: str | None = None


class PaymentLatePayload(EventPayload):
    payment_id: str
    loan_id: str
    organization_id: str
    amount: Decimal
    due_date: date
    days_late: int


# --- Draw / inspection


class DrawStatusChangedPayload(EventPayload):
    draw_id: str
    loan_id: str | None = None
    previous_status: str | None = None
    new_status: str | None = None
    amount: Decimal | None = None
    reason: str | None = None


class InspectionPayload(EventPayload):
    inspection_id: str
    loan_id: str | None = None
    draw_id: str | None = None
    organization_id: str | None = None
    scheduled_date: date | None = None
    completed_date: date | None = None
    days_overdue: int | None = None


# --- Fund / capital


class FundCreatedPayload(EventPayload):
    fund_id: str
    organization_id: str
    name: str
    fund_type: str
    total_capacity: Decimal


class FundClosedPayload(EventPayload):
    fund_id: str
    organization_id: str
    closing_date: datetime
    closed_by: str | None = None


class CommitmentAddedPayload(EventPayload):
    commitment_id: str
    fund_id: str
    lender_id: str
    organization_id: str
    committed_amount: Decimal
    commitment_date: date


class CommitmentCancelledPayload(EventPayload):
    commitment_id: str
    fund_id: str
    lender_id: str
    organization_id: str
    cancelled_by: str | None = None
    reason: str | None = None


class CapitalCalledPayload(EventPayload):
    call_id: str
    fund_id: str
    organization_id: str
    call_number: int
    call_amount: Decimal
    due_date: date
    purpose: str | None = None


class CapitalReceivedPayload(EventPayload):
    call_id: str
    fund_id: str
    organization_id: str
    amount: Decimal
    received_date: date


class CapitalAllocatedPayload(EventPayload):
    allocation_id: str
    fund_id: str
    loan_id: str
    organization_id: str
    amount: Decimal
    allocated_date: date
    available_capital: Decimal | None = None
    received_capital: Decimal | None = None


class CapitalReturnedPayload(EventPayload):
    allocation_id: str
    fund_id: str
    loan_id: str
    organization_id: str
    amount: Decimal
    returned_date: date


class DistributionMadePayload(EventPayload):
    distribution_id: str
    fund_id: str
    organization_id: str
    total_amount: Decimal
    distribution_type: str
    distribution_date: date
    line_count: int


PAYLOAD_MODELS: MappingProxyType[str, type[EventPayload]] = MappingProxyType(
    {
        EventTypes.LOAN_CREATED: LoanCreatedPayload,
        EventTypes.LOAN_STATUS_CHANGED: LoanStatusChangedPayload,
        EventTypes.LOAN_FUNDED: LoanFundedPayload,
        EventTypes.LOAN_DELINQUENT: LoanDelinquentPayload,
        EventTypes.PAYMENT_PROCESSED: PaymentProcessedPayload,
        EventTypes.PAYMENT_FAILED: PaymentFailedPayload,
        EventTypes.PAYMENT_LATE: PaymentLatePayload,
        EventTypes.DRAW_STATUS_CHANGED: DrawStatusChangedPayload,
        EventTypes.DRAW_APPROVED: DrawStatusChangedPayload,
        EventTypes.DRAW_REJECTED: DrawStatusChangedPayload,
        EventTypes.DRAW_OVERDUE: DrawStatusChangedPayload,
        EventTypes.INSPECTION_DUE: InspectionPayload,
        EventTypes.INSPECTION_OVERDUE: InspectionPayload,
        EventTypes.INSPECTION_COMPLETED: InspectionPayload,
        EventTypes.INSPECTION_SCHEDULED: InspectionPayload,
        EventTypes.FUND_CREATED: FundCreatedPayload,
        EventTypes.FUND_CLOSED: FundClosedPayload,
        EventTypes.COMMITMENT_ADDED: CommitmentAddedPayload,
        EventTypes.COMMITMENT_CANCELLED: CommitmentCancelledPayload,
        EventTypes.CAPITAL_CALLED: CapitalCalledPayload,
        EventTypes.CAPITAL_RECEIVED: CapitalReceivedPayload,
        EventTypes.CAPITAL_ALLOCATED: CapitalAllocatedPayload,
        EventTypes.CAPITAL_RETURNED: CapitalReturnedPayload,
        EventTypes.DISTRIBUTION_MADE: DistributionMadePayload,
    }
)


def parse_payload(event_type: str, payload: dict[str, Any] | None) -> EventPayload:
    """Return the typed payload for ``event_type``.

    Payloads that do not match their registered shape (older versions,
    third-party publishers) degrade to ``UnknownPayload`` instead of raising.
    """
    model = PAYLOAD_MODELS.get(event_type)
    data = payload or {}
    if model is None:
        return UnknownPayload.model_validate(data)
    try:
        return model.model_validate(data)
    except ValueError:
        return UnknownPayload.model_validate(data)
