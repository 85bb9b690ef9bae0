from __future__ import annotations

from enum import Enum


class LoanStatus(str, Enum):
    draft = "draft"
    submitted = "submitted"
    verification = "verification"
    underwriting = "underwriting"
    approved = "approved"
    closing = "closing"
    funded = "funded"
    rejected = "rejected"
