from __future__ import annotations

from enum import Enum


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
