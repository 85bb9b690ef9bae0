from __future__ import annotations

from enum import Enum


class InspectionStatus(str, Enum):
    scheduled = "scheduled"
    completed = "completed"
    overdue = "overdue"
