import uuid
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from lendops.domain.payments.enums import PaymentStatus


class PaymentCreate(BaseModel):
    loan_id: uuid.UUID
    amount: Decimal = Field(gt=0, max_digits=15, decimal_places=2)
    due_date: date
    actor_id: str | None = None


class PaymentReceived(BaseModel):
    received_date: date | None = None
    actor_id: str | None = None


class PaymentFailed(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    actor_id: str | None = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    loan_id: uuid.UUID
    amount: Decimal
    due_date: date
    received_date: date | None
    status: PaymentStatus
    failure_reason: str | None
