from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.domain.alerts import service as alert_service
from lendops.domain.alerts.enums import AlertSeverity
from lendops.domain.inspections import service as inspection_service
from lendops.domain.inspections.enums import InspectionStatus
from lendops.domain.loans import service as loan_service
from lendops.domain.payments import service as payment_service
from lendops.domain.payments.enums import PaymentStatus
from lendops.shared.exceptions import ValidationError


def _codes(db: Session) -> list[str]:
    db.expire_all()
    return sorted(a.code for a in alert_service.list_alerts(db, limit=100))


def test_late_scan_fires_once_per_payment(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    payment = payment_service.schedule_payment(db_session, event_bus, loan.id, Decimal("1500.00"), date(2024, 3, 1))

    first = payment_service.check_late_payments(db_session, event_bus, as_of=date(2024, 3, 10), delinquency_days=30)
    second = payment_service.check_late_payments(db_session, event_bus, as_of=date(2024, 3, 11), delinquency_days=30)

    assert (first.late_payments, first.delinquent_loans) == (1, 0)
    assert (second.late_payments, second.delinquent_loans) == (0, 0)

    late_events = [e for e in EventBus.get_event_history(db_session, payment.id, "Payment") if e.event_type == "Payment.Late"]
    assert len(late_events) == 1
    assert late_events[0].payload["daysLate"] == 9
    assert _codes(db_session) == ["PAYMENT_LATE"]


def test_loan_becomes_delinquent_after_threshold(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    payment_service.schedule_payment(db_session, event_bus, loan.id, Decimal("1500.00"), date(2024, 3, 1))

    result = payment_service.check_late_payments(db_session, event_bus, as_of=date(2024, 4, 15), delinquency_days=30)
    again = payment_service.check_late_payments(db_session, event_bus, as_of=date(2024, 4, 16), delinquency_days=30)

    assert result.delinquent_loans == 1
    assert again.delinquent_loans == 0

    db_session.expire_all()
    assert loan_service.get_loan(db_session, loan.id).delinquent_since is not None
    assert "Loan.Delinquent" in [e.event_type for e in EventBus.get_event_history(db_session, loan.id, "Loan")]

    critical = alert_service.list_alerts(db_session, severity=AlertSeverity.critical)
    assert sorted(a.code for a in critical) == ["LOAN_DELINQUENT", "PAYMENT_LATE"]


def test_received_payment_is_never_late(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    payment = payment_service.schedule_payment(db_session, event_bus, loan.id, Decimal("1500.00"), date(2024, 3, 1))
    received = payment_service.record_payment_received(db_session, event_bus, payment.id, date(2024, 3, 1))
    assert received.status == PaymentStatus.completed

    result = payment_service.check_late_payments(db_session, event_bus, as_of=date(2024, 5, 1))
    assert result.late_payments == 0

    with pytest.raises(ValidationError):
        payment_service.record_payment_failed(db_session, event_bus, payment.id, reason="too late")


def test_inspection_due_then_overdue(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    inspection = inspection_service.schedule_inspection(
        db_session, event_bus, loan.id, date(2024, 5, 10), draw_id="draw-7"
    )

    due = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 5, 10), grace_days=0)
    assert (due.due, due.overdue) == (1, 0)

    overdue = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 5, 12), grace_days=0)
    assert (overdue.due, overdue.overdue) == (0, 1)

    repeat = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 5, 13), grace_days=0)
    assert (repeat.due, repeat.overdue) == (0, 0)

    db_session.expire_all()
    assert db_session.get(type(inspection), inspection.id).status == InspectionStatus.overdue
    assert _codes(db_session) == ["INSPECTION_DUE", "INSPECTION_OVERDUE"]


def test_grace_period_delays_overdue(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    inspection_service.schedule_inspection(db_session, event_bus, loan.id, date(2024, 5, 10))

    early = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 5, 12), grace_days=3)
    assert early.overdue == 0
    late = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 5, 14), grace_days=3)
    assert late.overdue == 1


def test_completed_inspection_leaves_the_scan(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan()
    inspection = inspection_service.schedule_inspection(db_session, event_bus, loan.id, date(2024, 5, 10))
    inspection_service.complete_inspection(db_session, event_bus, inspection.id, date(2024, 5, 9), findings="70% complete")

    result = inspection_service.check_overdue_inspections(db_session, event_bus, as_of=date(2024, 6, 1))
    assert (result.due, result.overdue) == (0, 0)

    with pytest.raises(ValidationError):
        inspection_service.complete_inspection(db_session, event_bus, inspection.id)
