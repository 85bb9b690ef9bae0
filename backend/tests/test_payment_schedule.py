from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.domain.loans import service as loan_service
from lendops.domain.loans.enums import LoanStatus
from lendops.domain.payments import service as payment_service
from lendops.domain.payments.enums import PaymentStatus
from lendops.domain.payments.models import Payment
from lendops.shared.exceptions import ValidationError

TO_FUNDED = [
    LoanStatus.submitted,
    LoanStatus.verification,
    LoanStatus.underwriting,
    LoanStatus.approved,
    LoanStatus.closing,
    LoanStatus.funded,
]


def _fund(db: Session, bus: EventBus, loan_id) -> None:
    for status in TO_FUNDED:
        loan_service.transition(db, bus, loan_id, status, actor_id="underwriter-1")


def _payments(db: Session, loan_id) -> list[Payment]:
    db.expire_all()
    return list(db.scalars(select(Payment).where(Payment.loan_id == loan_id).order_by(Payment.installment_number)))


def test_add_months_clamps_to_month_end():
    assert payment_service.add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert payment_service.add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)
    assert payment_service.add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)


def test_amortized_schedule_repays_principal_exactly():
    schedule = payment_service.build_payment_schedule(Decimal("3000.00"), Decimal("12"), 3, date(2024, 1, 15))

    assert [i.amount for i in schedule] == [Decimal("1020.07"), Decimal("1020.07"), Decimal("1020.06")]
    assert [i.interest for i in schedule] == [Decimal("30.00"), Decimal("20.10"), Decimal("10.10")]
    assert sum(i.principal for i in schedule) == Decimal("3000.00")
    assert [i.due_date for i in schedule] == [date(2024, 2, 15), date(2024, 3, 15), date(2024, 4, 15)]


def test_zero_rate_schedule_splits_principal():
    schedule = payment_service.build_payment_schedule(Decimal("100.00"), Decimal("0"), 3, date(2024, 1, 1))

    assert [i.amount for i in schedule] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert all(i.interest == 0 for i in schedule)


def test_schedule_needs_a_positive_term():
    with pytest.raises(ValidationError):
        payment_service.build_payment_schedule(Decimal("100.00"), Decimal("5"), 0, date(2024, 1, 1))


def test_funding_a_loan_schedules_its_monthly_payments(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan("3000.00", interest_rate=Decimal("12"), term_months=3)
    _fund(db_session, event_bus, loan.id)

    payments = _payments(db_session, loan.id)
    funded_on = loan_service.get_loan(db_session, loan.id).funded_at.date()
    assert [p.installment_number for p in payments] == [1, 2, 3]
    assert [p.amount for p in payments] == [Decimal("1020.07"), Decimal("1020.07"), Decimal("1020.06")]
    assert [p.due_date for p in payments] == [payment_service.add_months(funded_on, n) for n in (1, 2, 3)]
    assert all(p.status == PaymentStatus.pending for p in payments)
    assert all(p.organization_id == loan.organization_id for p in payments)

    (funded_event,) = [e for e in EventBus.get_event_history(db_session, loan.id) if e.event_type == "Loan.Funded"]
    assert {p.source_event_id for p in payments} == {funded_event.id}
    for payment in payments:
        (scheduled,) = EventBus.get_event_history(db_session, payment.id, "Payment")
        assert scheduled.event_type == "Payment.Scheduled"
        assert scheduled.causation_id == str(funded_event.id)
        assert scheduled.payload["installmentNumber"] == payment.installment_number


def test_redelivered_funding_event_never_duplicates_payments(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan("3000.00", interest_rate=Decimal("12"), term_months=3)
    _fund(db_session, event_bus, loan.id)
    (funded_event,) = [e for e in EventBus.get_event_history(db_session, loan.id) if e.event_type == "Loan.Funded"]

    event_bus.deliver(funded_event.id)
    event_bus.replay(loan.id, "Loan")

    assert len(_payments(db_session, loan.id)) == 3


def test_loan_without_term_gets_no_schedule(db_session: Session, event_bus: EventBus, make_loan):
    loan = make_loan(interest_rate=Decimal("9.5"))
    _fund(db_session, event_bus, loan.id)

    assert _payments(db_session, loan.id) == []
