import uuid
from datetime import date

from pydantic import BaseModel, ConfigDict, Field

from lendops.domain.inspections.enums import InspectionStatus


class InspectionCreate(BaseModel):
    loan_id: uuid.UUID
    scheduled_date: date
    draw_id: str | None = Field(default=None, max_length=64)
    actor_id: str | None = None


class InspectionComplete(BaseModel):
    completed_date: date | None = None
    findings: str | None = None
    actor_id: str | None = None


class InspectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    loan_id: uuid.UUID
    draw_id: str | None
    scheduled_date: date
    completed_date: date | None
    status: InspectionStatus
    findings: str | None
