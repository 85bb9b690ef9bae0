from __future__ import annotations

from enum import Enum


class FundType(str, Enum):
    private = "private"
    syndicated = "syndicated"
    institutional = "institutional"


class FundStatus(str, Enum):
    active = "active"
    closed = "closed"


class CommitmentStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"


class CapitalCallStatus(str, Enum):
    pending = "pending"
    funded = "funded"
    overdue = "overdue"


class DistributionType(str, Enum):
    return_of_capital = "return_of_capital"
    profit = "profit"
    interest = "interest"


class DistributionStatus(str, Enum):
    scheduled = "scheduled"
    processed = "processed"
    cancelled = "cancelled"
