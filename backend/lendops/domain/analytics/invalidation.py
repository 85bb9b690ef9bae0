"""
Which cached analytics views each event makes stale.

The map is built once at import and is read-only afterwards. Event types
that are not listed invalidate nothing.
"""

from __future__ import annotations

from types import MappingProxyType

from lendops.core.events.types import EventTypes
from lendops.shared.enums import AnalyticsDomain

ALL_ANALYTICS_TAG = "analytics:*"


def tag_for(domain: AnalyticsDomain | str) -> str:
    return f"analytics:{AnalyticsDomain(domain).value}"


LOANS = tag_for(AnalyticsDomain.loans)
FUNDS = tag_for(AnalyticsDomain.funds)
PAYMENTS = tag_for(AnalyticsDomain.payments)
INSPECTIONS = tag_for(AnalyticsDomain.inspections)

ANALYTICS_EVENT_MAP: MappingProxyType[str, frozenset[str]] = MappingProxyType(
    {
        # Loan
        EventTypes.LOAN_CREATED: frozenset({LOANS}),
        EventTypes.LOAN_STATUS_CHANGED: frozenset({LOANS}),
        EventTypes.LOAN_FUNDED: frozenset({LOANS, FUNDS}),
        EventTypes.LOAN_DELINQUENT: frozenset({LOANS}),
        # Payment
        EventTypes.PAYMENT_SCHEDULED: frozenset({PAYMENTS}),
        EventTypes.PAYMENT_RECEIVED: frozenset({PAYMENTS, LOANS}),
        EventTypes.PAYMENT_PROCESSED: frozenset({PAYMENTS, LOANS}),
        EventTypes.PAYMENT_FAILED: frozenset({PAYMENTS, LOANS}),
        EventTypes.PAYMENT_LATE: frozenset({PAYMENTS, LOANS}),
        # Inspection
        EventTypes.INSPECTION_SCHEDULED: frozenset({INSPECTIONS}),
        EventTypes.INSPECTION_COMPLETED: frozenset({INSPECTIONS}),
        EventTypes.INSPECTION_OVERDUE: frozenset({INSPECTIONS}),
        # Fund / capital
        EventTypes.FUND_CREATED: frozenset({FUNDS}),
        EventTypes.FUND_UPDATED: frozenset({FUNDS}),
        EventTypes.FUND_CLOSED: frozenset({FUNDS}),
        EventTypes.COMMITMENT_ADDED: frozenset({FUNDS}),
        EventTypes.COMMITMENT_ACTIVATED: frozenset({FUNDS}),
        EventTypes.COMMITMENT_CANCELLED: frozenset({FUNDS}),
        EventTypes.CAPITAL_CALLED: frozenset({FUNDS}),
        EventTypes.CAPITAL_RECEIVED: frozenset({FUNDS}),
        EventTypes.CAPITAL_ALLOCATED: frozenset({FUNDS, LOANS}),
        EventTypes.CAPITAL_RETURNED: frozenset({FUNDS, LOANS}),
        EventTypes.DISTRIBUTION_MADE: frozenset({FUNDS}),
        EventTypes.DISTRIBUTION_POSTED: frozenset({FUNDS}),
        # Draws move loan balances
        EventTypes.DRAW_APPROVED: frozenset({LOANS}),
        EventTypes.DRAW_DISBURSED: frozenset({LOANS}),
    }
)

_EMPTY: frozenset[str] = frozenset()


def get_cache_tags_for_event(event_type: str) -> frozenset[str]:
    return ANALYTICS_EVENT_MAP.get(event_type, _EMPTY)


def has_analytics_mapping(event_type: str) -> bool:
    return event_type in ANALYTICS_EVENT_MAP


def get_event_types_for_tag(tag: str) -> list[str]:
    """Event types that invalidate ``tag``; ``analytics:*`` matches every mapped type."""
    if tag == ALL_ANALYTICS_TAG:
        return sorted(ANALYTICS_EVENT_MAP)
    return sorted(event_type for event_type, tags in ANALYTICS_EVENT_MAP.items() if tag in tags)
