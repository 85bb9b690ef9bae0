from __future__ import annotations

from functools import lru_cache

from lendops.core.db.session import get_session_local
from lendops.core.events.bus import EventBus


def register_default_handlers(bus: EventBus, cache=None) -> EventBus:
    """Subscribe the built-in consumers: analytics invalidation first, then alerting, then payment scheduling."""
    from lendops.domain.alerts.handlers import register_alert_handlers
    from lendops.domain.analytics.cache import get_analytics_cache
    from lendops.domain.analytics.handlers import register_invalidation_handlers
    from lendops.domain.payments.handlers import register_payment_handlers

    register_invalidation_handlers(bus, cache if cache is not None else get_analytics_cache())
    register_alert_handlers(bus)
    register_payment_handlers(bus)
    return bus


@lru_cache(maxsize=1)
def get_event_bus() -> EventBus:
    # Lazy: the bus binds to the process-wide session factory on first use.
    return register_default_handlers(EventBus(get_session_local()))
