from __future__ import annotations

from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import DomainEvent, EventHandlerRegistration
from lendops.domain.alerts.rules import ALERT_RULES
from lendops.domain.alerts.service import handle_event

ALERT_HANDLER_PRIORITY = 100


def _on_event(session: Session, event: DomainEvent) -> None:
    handle_event(session, event)


def register_alert_handlers(bus: EventBus) -> None:
    for event_type in ALERT_RULES:
        bus.subscribe(
            EventHandlerRegistration(
                handler_name=f"alerts:{event_type}",
                event_type=event_type,
                handler=_on_event,
                priority=ALERT_HANDLER_PRIORITY,
            )
        )
