"""
Static event -> alert table.

Severity policy: delinquency and payment failures are critical, overdue
draws and inspections are warnings, routine status changes are info.

Rules read the typed payload of their event type (``parse_payload``); an
event whose payload does not parse never produces an alert.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from lendops.core.events.payloads import (
    CapitalAllocatedPayload,
    CapitalCalledPayload,
    CommitmentAddedPayload,
    DistributionMadePayload,
    DrawStatusChangedPayload,
    EventPayload,
    InspectionPayload,
    LoanDelinquentPayload,
    LoanFundedPayload,
    LoanStatusChangedPayload,
    PaymentFailedPayload,
    PaymentLatePayload,
)
from lendops.core.events.types import DomainEvent, EventTypes
from lendops.domain.alerts.enums import AlertSeverity

LOW_CAPITAL_THRESHOLD = Decimal("0.10")


def _or(value: Any, default: str) -> str:
    return str(value) if value not in (None, "") else default


def _low_capital(payload: CapitalAllocatedPayload) -> bool:
    if payload.available_capital is None or not payload.received_capital:
        return False
    return payload.available_capital / payload.received_capital < LOW_CAPITAL_THRESHOLD


@dataclass(frozen=True)
class AlertRule:
    code: str
    severity: AlertSeverity
    message: Callable[[Any], str]
    # Payload field holding the target entity id; falls back to the aggregate.
    entity_type: str | None = None
    entity_field: str | None = None
    predicate: Callable[[Any], bool] | None = None

    def applies_to(self, payload: EventPayload) -> bool:
        return self.predicate is None or self.predicate(payload)

    def entity_for(self, event: DomainEvent, payload: EventPayload) -> tuple[str, str]:
        entity_id = getattr(payload, self.entity_field, None) if self.entity_field else None
        if entity_id:
            return self.entity_type or event.aggregate_type, str(entity_id)
        return event.aggregate_type, event.aggregate_id


critical, warning, info = AlertSeverity.critical, AlertSeverity.warning, AlertSeverity.info


def _loan_delinquent(p: LoanDelinquentPayload) -> str:
    return f"Loan {p.loan_id} is now delinquent ({p.days_late} days late)"


def _payment_failed(p: PaymentFailedPayload) -> str:
    return f"Payment {p.payment_id} failed: {_or(p.reason, 'Unknown reason')}"


def _payment_late(p: PaymentLatePayload) -> str:
    return f"Payment {p.payment_id} is {p.days_late} days overdue"


def _draw_overdue(p: DrawStatusChangedPayload) -> str:
    return f"Draw request {p.draw_id} is overdue"


def _draw_rejected(p: DrawStatusChangedPayload) -> str:
    return f"Draw request {p.draw_id} rejected: {_or(p.reason, 'No reason provided')}"


def _inspection_due(p: InspectionPayload) -> str:
    return f"Inspection {p.inspection_id} is due within 24 hours"


def _inspection_overdue(p: InspectionPayload) -> str:
    return f"Inspection {p.inspection_id} is overdue by {_or(p.days_overdue, '?')} days"


def _low_capital_message(p: CapitalAllocatedPayload) -> str:
    return f"Fund {p.fund_id} has only ${_or(p.available_capital, '0')} available after allocation"


def _status_changed(p: LoanStatusChangedPayload) -> str:
    return f"Loan {p.loan_id} moved from {p.previous_status} to {p.new_status}"


def _loan_funded(p: LoanFundedPayload) -> str:
    return f"Loan {p.loan_id} funded for ${p.principal}"


def _draw_status_changed(p: DrawStatusChangedPayload) -> str:
    return f"Draw request {p.draw_id} status changed to {_or(p.new_status, 'unknown')}"


def _draw_approved(p: DrawStatusChangedPayload) -> str:
    return f"Draw request {p.draw_id} approved for ${_or(p.amount, '0')}"


def _commitment_added(p: CommitmentAddedPayload) -> str:
    return f"New commitment of ${p.committed_amount} to fund {p.fund_id}"


def _capital_called(p: CapitalCalledPayload) -> str:
    return f"Capital call #{p.call_number} for ${p.call_amount} due {p.due_date.isoformat()}"


def _distribution_made(p: DistributionMadePayload) -> str:
    return f"Distribution of ${p.total_amount} paid to {p.line_count} lenders"


ALERT_RULES: MappingProxyType[str, AlertRule] = MappingProxyType(
    {
        # Critical
        EventTypes.LOAN_DELINQUENT: AlertRule("LOAN_DELINQUENT", critical, _loan_delinquent, "Loan", "loan_id"),
        EventTypes.PAYMENT_FAILED: AlertRule("PAYMENT_FAILED", critical, _payment_failed, "Payment", "payment_id"),
        EventTypes.PAYMENT_LATE: AlertRule("PAYMENT_LATE", critical, _payment_late, "Payment", "payment_id"),
        # Warning
        EventTypes.DRAW_OVERDUE: AlertRule("DRAW_OVERDUE", warning, _draw_overdue, "Draw", "draw_id"),
        EventTypes.DRAW_REJECTED: AlertRule("DRAW_REJECTED", warning, _draw_rejected, "Draw", "draw_id"),
        EventTypes.INSPECTION_DUE: AlertRule("INSPECTION_DUE", warning, _inspection_due, "Inspection", "inspection_id"),
        EventTypes.INSPECTION_OVERDUE: AlertRule(
            "INSPECTION_OVERDUE", warning, _inspection_overdue, "Inspection", "inspection_id"
        ),
        EventTypes.CAPITAL_ALLOCATED: AlertRule(
            "FUND_LOW_CAPITAL", warning, _low_capital_message, "Fund", "fund_id", predicate=_low_capital
        ),
        # Info
        EventTypes.LOAN_STATUS_CHANGED: AlertRule("LOAN_STATUS_CHANGED", info, _status_changed, "Loan", "loan_id"),
        EventTypes.LOAN_FUNDED: AlertRule("LOAN_FUNDED", info, _loan_funded, "Loan", "loan_id"),
        EventTypes.DRAW_STATUS_CHANGED: AlertRule("DRAW_STATUS_CHANGED", info, _draw_status_changed, "Draw", "draw_id"),
        EventTypes.DRAW_APPROVED: AlertRule("DRAW_APPROVED", info, _draw_approved, "Draw", "draw_id"),
        EventTypes.COMMITMENT_ADDED: AlertRule("COMMITMENT_ADDED", info, _commitment_added, "Fund", "fund_id"),
        EventTypes.CAPITAL_CALLED: AlertRule("CAPITAL_CALLED", info, _capital_called, "Fund", "fund_id"),
        EventTypes.DISTRIBUTION_MADE: AlertRule("DISTRIBUTION_MADE", info, _distribution_made, "Fund", "fund_id"),
    }
)


def get_alert_rule(event_type: str) -> AlertRule | None:
    return ALERT_RULES.get(event_type)
