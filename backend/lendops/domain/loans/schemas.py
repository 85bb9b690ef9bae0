import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from lendops.domain.loans.enums import LoanStatus


class LoanCreate(BaseModel):
    organization_id: uuid.UUID
    principal: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    interest_rate: Decimal | None = Field(default=None, ge=0)
    term_months: int | None = Field(default=None, gt=0)
    collateral_value: Decimal | None = Field(default=None, ge=0)
    borrower_name: str | None = Field(default=None, max_length=255)
    actor_id: str | None = None


class LoanTransitionRequest(BaseModel):
    target_status: LoanStatus
    actor_id: str | None = None
    reason: str | None = Field(default=None, max_length=2000)


class LoanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    borrower_name: str | None
    principal: Decimal
    interest_rate: Decimal | None
    term_months: int | None
    collateral_value: Decimal | None
    status: LoanStatus
    status_changed_at: datetime | None
    funded_at: datetime | None
    delinquent_since: datetime | None
    version: int


class NextStatesOut(BaseModel):
    status: LoanStatus
    label: str
    next_states: list[LoanStatus]
