from __future__ import annotations

from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import DomainEvent, EventHandlerRegistration, EventTypes
from lendops.domain.payments.service import create_funding_schedule

# After invalidation and alerting for Loan.Funded.
PAYMENT_SCHEDULE_HANDLER_PRIORITY = 50


def make_payment_schedule_handler(bus: EventBus):
    def _on_loan_funded(session: Session, event: DomainEvent) -> None:
        create_funding_schedule(session, bus, event)

    return _on_loan_funded


def register_payment_handlers(bus: EventBus) -> None:
    bus.subscribe(
        EventHandlerRegistration(
            handler_name="payments:schedule-on-funded",
            event_type=EventTypes.LOAN_FUNDED,
            handler=make_payment_schedule_handler(bus),
            priority=PAYMENT_SCHEDULE_HANDLER_PRIORITY,
        )
    )
