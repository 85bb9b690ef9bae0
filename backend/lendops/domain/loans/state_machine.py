"""
Loan lifecycle rules.

The adjacency table is the single source of truth for which status changes
are legal. ``funded`` and ``rejected`` are terminal.
"""

from __future__ import annotations

from types import MappingProxyType

from lendops.domain.loans.enums import LoanStatus

VALID_TRANSITIONS: MappingProxyType[LoanStatus, frozenset[LoanStatus]] = MappingProxyType(
    {
        LoanStatus.draft: frozenset({LoanStatus.submitted, LoanStatus.rejected}),
        LoanStatus.submitted: frozenset({LoanStatus.verification, LoanStatus.draft, LoanStatus.rejected}),
        LoanStatus.verification: frozenset({LoanStatus.underwriting, LoanStatus.submitted, LoanStatus.rejected}),
        LoanStatus.underwriting: frozenset({LoanStatus.approved, LoanStatus.verification, LoanStatus.rejected}),
        LoanStatus.approved: frozenset({LoanStatus.closing, LoanStatus.underwriting}),
        LoanStatus.closing: frozenset({LoanStatus.funded, LoanStatus.approved}),
        LoanStatus.funded: frozenset(),
        LoanStatus.rejected: frozenset(),
    }
)

_STATUS_LABELS = MappingProxyType({s: s.value.capitalize() for s in LoanStatus})

# Order used when presenting next states (forward moves before send-backs).
_DISPLAY_ORDER = {s: i for i, s in enumerate(LoanStatus)}


def can_transition(current: LoanStatus | str, target: LoanStatus | str) -> bool:
    return LoanStatus(target) in VALID_TRANSITIONS[LoanStatus(current)]


def get_next_states(current: LoanStatus | str) -> list[LoanStatus]:
    return sorted(VALID_TRANSITIONS[LoanStatus(current)], key=_DISPLAY_ORDER.__getitem__)


def get_status_label(status: LoanStatus | str) -> str:
    return _STATUS_LABELS[LoanStatus(status)]


def is_terminal(status: LoanStatus | str) -> bool:
    return not VALID_TRANSITIONS[LoanStatus(status)]
