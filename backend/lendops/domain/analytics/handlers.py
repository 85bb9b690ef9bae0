from __future__ import annotations

from sqlalchemy.orm import Session

from lendops.core.events.bus import EventBus
from lendops.core.events.types import DomainEvent, EventHandlerRegistration
from lendops.domain.analytics.cache import AnalyticsCache
from lendops.domain.analytics.invalidation import ANALYTICS_EVENT_MAP, get_cache_tags_for_event

# Above the alert handlers, so invalidation runs first for shared event types.
INVALIDATION_HANDLER_PRIORITY = 200


def make_invalidation_handler(cache: AnalyticsCache):
    def _invalidate(session: Session, event: DomainEvent) -> None:
        for tag in sorted(get_cache_tags_for_event(event.event_type)):
            cache.invalidate(tag)

    return _invalidate


def register_invalidation_handlers(bus: EventBus, cache: AnalyticsCache) -> None:
    handler = make_invalidation_handler(cache)
    for event_type in ANALYTICS_EVENT_MAP:
        bus.subscribe(
            EventHandlerRegistration(
                handler_name=f"analytics-invalidation:{event_type}",
                event_type=event_type,
                handler=handler,
                priority=INVALIDATION_HANDLER_PRIORITY,
            )
        )
