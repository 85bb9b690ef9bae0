from __future__ import annotations

import calendar
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from lendops.core.config import settings
from lendops.core.events.bus import EventBus
from lendops.core.events.payloads import LoanFundedPayload
from lendops.core.events.types import DomainEvent, EventTypes
from lendops.domain.loans.models import Loan
from lendops.domain.payments.enums import PaymentStatus
from lendops.domain.payments.models import Payment
from lendops.shared.exceptions import NotFound, ValidationError
from lendops.shared.utils import to_money, utcnow

logger = structlog.get_logger(__name__)

AGGREGATE_TYPE = "Payment"


@dataclass(frozen=True)
class LateScanResult:
    late_payments: int
    delinquent_loans: int


def _load_pending(session: Session, payment_id: uuid.UUID) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise NotFound(f"Payment {payment_id} not found")
    if payment.status != PaymentStatus.pending:
        raise ValidationError(f"Payment {payment_id} is already {PaymentStatus(payment.status).value}")
    return payment


def _payment_payload(payment: Payment) -> dict:
    return {
        "paymentId": payment.id,
        "loanId": payment.loan_id,
        "organizationId": payment.organization_id,
        "amount": to_money(payment.amount),
    }


def schedule_payment(
    db: Session,
    bus: EventBus,
    loan_id: uuid.UUID,
    amount: Decimal,
    due_date: date,
    *,
    actor_id: str | None = None,
) -> Payment:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    def _op(session: Session) -> Payment:
        loan = session.get(Loan, loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found")
        payment = Payment(
            id=uuid.uuid4(),
            organization_id=loan.organization_id,
            loan_id=loan.id,
            amount=amount,
            due_date=due_date,
            status=PaymentStatus.pending,
            created_by=actor_id,
            updated_by=actor_id,
        )
        session.add(payment)
        session.flush()
        bus.publish(
            session,
            EventTypes.PAYMENT_SCHEDULED,
            payment.id,
            AGGREGATE_TYPE,
            {**_payment_payload(payment), "dueDate": due_date},
            metadata={"userId": actor_id, "organizationId": loan.organization_id},
        )
        return payment

    return bus.commit_and_dispatch(db, _op)


@dataclass(frozen=True)
class ScheduledInstallment:
    number: int
    due_date: date
    amount: Decimal
    principal: Decimal
    interest: Decimal


def add_months(start: date, months: int) -> date:
    """Same day ``months`` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year, month = start.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(start.day, calendar.monthrange(year, month)[1]))


def build_payment_schedule(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
    start: date,
) -> list[ScheduledInstallment]:
    """
    Level monthly installments that fully amortize ``principal`` over ``term_months``.

    The rate is an annual percentage (7.5 means 7.5%). Interest accrues on the
    running balance each month; the final installment settles whatever balance
    the cent rounding left over.
    """
    if term_months <= 0:
        raise ValidationError("Payment schedule needs a positive term")
    principal = to_money(principal)
    monthly_rate = Decimal(annual_rate_percent) / Decimal(100) / Decimal(12)
    if monthly_rate:
        level = to_money(principal * monthly_rate / (1 - (1 + monthly_rate) ** -term_months))
    else:
        level = to_money(principal / term_months)

    installments: list[ScheduledInstallment] = []
    balance = principal
    for number in range(1, term_months + 1):
        interest = to_money(balance * monthly_rate)
        repaid = balance if number == term_months else min(level - interest, balance)
        balance -= repaid
        installments.append(
            ScheduledInstallment(
                number=number,
                due_date=add_months(start, number),
                amount=repaid + interest,
                principal=repaid,
                interest=interest,
            )
        )
    return installments


def create_funding_schedule(session: Session, bus: EventBus, event: DomainEvent) -> list[Payment]:
    """
    Write the monthly payments for a loan that was just funded.

    Runs inside the handler's session; the ``Payment.Scheduled`` events go out
    after it commits. A redelivered or replayed ``Loan.Funded`` finds the rows
    it created the first time and writes nothing.
    """
    payload = event.typed_payload()
    if not isinstance(payload, LoanFundedPayload):
        logger.warning("payment_schedule_unreadable_event", event_id=str(event.id))
        return []

    existing = list(
        session.scalars(
            select(Payment).where(Payment.source_event_id == event.id).order_by(Payment.installment_number.asc())
        )
    )
    if existing:
        return existing

    loan = session.get(Loan, uuid.UUID(payload.loan_id))
    if loan is None:
        raise NotFound(f"Loan {payload.loan_id} not found")
    if not loan.term_months or loan.interest_rate is None:
        logger.info("payment_schedule_skipped", loan_id=payload.loan_id, reason="missing rate or term")
        return []

    schedule = build_payment_schedule(payload.principal, loan.interest_rate, loan.term_months, payload.funded_date.date())
    payments: list[Payment] = []
    for installment in schedule:
        payment = Payment(
            id=uuid.uuid4(),
            organization_id=loan.organization_id,
            loan_id=loan.id,
            amount=installment.amount,
            due_date=installment.due_date,
            status=PaymentStatus.pending,
            source_event_id=event.id,
            installment_number=installment.number,
            created_by=payload.funded_by,
            updated_by=payload.funded_by,
        )
        session.add(payment)
        session.flush()
        bus.publish(
            session,
            EventTypes.PAYMENT_SCHEDULED,
            payment.id,
            AGGREGATE_TYPE,
            {**_payment_payload(payment), "dueDate": installment.due_date, "installmentNumber": installment.number},
            metadata={"userId": payload.funded_by, "organizationId": loan.organization_id, "source": "payment-schedule"},
            causation_id=str(event.id),
            correlation_id=event.correlation_id,
        )
        payments.append(payment)

    logger.info("payment_schedule_created", loan_id=payload.loan_id, installments=len(payments), event_id=str(event.id))
    return payments


def record_payment_received(
    db: Session,
    bus: EventBus,
    payment_id: uuid.UUID,
    received_date: date | None = None,
    *,
    actor_id: str | None = None,
) -> Payment:
    received_date = received_date or date.today()

    def _op(session: Session) -> Payment:
        payment = _load_pending(session, payment_id)
        payment.status = PaymentStatus.completed
        payment.received_date = received_date
        payment.updated_by = actor_id
        session.flush()
        bus.publish(
            session,
            EventTypes.PAYMENT_PROCESSED,
            payment.id,
            AGGREGATE_TYPE,
            {**_payment_payload(payment), "processedDate": received_date},
            metadata={"userId": actor_id, "organizationId": payment.organization_id},
        )
        return payment

    return bus.commit_and_dispatch(db, _op)


def record_payment_failed(
    db: Session,
    bus: EventBus,
    payment_id: uuid.UUID,
    reason: str | None = None,
    *,
    actor_id: str | None = None,
) -> Payment:
    def _op(session: Session) -> Payment:
        payment = _load_pending(session, payment_id)
        payment.status = PaymentStatus.failed
        payment.failure_reason = reason
        payment.updated_by = actor_id
        session.flush()
        bus.publish(
            session,
            EventTypes.PAYMENT_FAILED,
            payment.id,
            AGGREGATE_TYPE,
            {**_payment_payload(payment), "reason": reason},
            metadata={"userId": actor_id, "organizationId": payment.organization_id},
        )
        return payment

    return bus.commit_and_dispatch(db, _op)


def check_late_payments(
    db: Session,
    bus: EventBus,
    as_of: date | None = None,
    delinquency_days: int | None = None,
) -> LateScanResult:
    """
    Scheduled scan over pending payments past their due date.

    Emits ``Payment.Late`` once per payment and ``Loan.Delinquent`` once per
    loan whose oldest unpaid payment is at least ``delinquency_days`` late.
    Safe to run repeatedly: the notified stamps make both events one-shot.
    """
    as_of = as_of or date.today()
    threshold = settings.payment_delinquency_days if delinquency_days is None else delinquency_days

    def _op(session: Session) -> LateScanResult:
        overdue = list(
            session.scalars(
                select(Payment)
                .where(Payment.status == PaymentStatus.pending, Payment.due_date < as_of)
                .order_by(Payment.due_date.asc(), Payment.id.asc())
            )
        )
        meta = {"source": "monitor"}
        late = 0
        oldest_by_loan: dict[uuid.UUID, Payment] = {}
        for payment in overdue:
            oldest_by_loan.setdefault(payment.loan_id, payment)
            if payment.late_notified_at is not None:
                continue
            payment.late_notified_at = utcnow()
            session.flush()
            bus.publish(
                session,
                EventTypes.PAYMENT_LATE,
                payment.id,
                AGGREGATE_TYPE,
                {**_payment_payload(payment), "dueDate": payment.due_date, "daysLate": (as_of - payment.due_date).days},
                metadata={**meta, "organizationId": payment.organization_id},
            )
            late += 1

        delinquent = 0
        for loan_id, oldest in oldest_by_loan.items():
            days_late = (as_of - oldest.due_date).days
            if days_late < threshold:
                continue
            loan = session.get(Loan, loan_id)
            if loan is None or loan.delinquent_since is not None:
                continue
            loan.delinquent_since = utcnow()
            session.flush()
            bus.publish(
                session,
                EventTypes.LOAN_DELINQUENT,
                loan.id,
                "Loan",
                {
                    "loanId": loan.id,
                    "organizationId": loan.organization_id,
                    "daysLate": days_late,
                    "oldestPaymentId": oldest.id,
                },
                metadata={**meta, "organizationId": loan.organization_id},
            )
            delinquent += 1
        return LateScanResult(late_payments=late, delinquent_loans=delinquent)

    result = bus.commit_and_dispatch(db, _op)
    logger.info("late_payment_scan", as_of=as_of.isoformat(), late=result.late_payments, delinquent=result.delinquent_loans)
    return result
