import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

from lendops.domain.funds.enums import (
    CapitalCallStatus,
    CommitmentStatus,
    DistributionStatus,
    DistributionType,
    FundStatus,
    FundType,
)

Money = Annotated[Decimal, Field(gt=0, max_digits=15, decimal_places=2)]


class FundCreate(BaseModel):
    organization_id: uuid.UUID
    name: str = Field(min_length=2, max_length=255)
    fund_type: FundType
    total_capacity: Money
    strategy: str | None = None
    target_return: Decimal | None = None
    management_fee_bps: int = Field(default=0, ge=0)
    performance_fee_bps: int = Field(default=0, ge=0)
    actor_id: str | None = None


class FundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    fund_type: FundType
    status: FundStatus
    total_capacity: Decimal
    inception_date: datetime
    closing_date: datetime | None
    version: int


class CommitmentCreate(BaseModel):
    lender_id: uuid.UUID
    amount: Money
    commitment_date: date | None = None
    actor_id: str | None = None


class CommitmentCancel(BaseModel):
    reason: str | None = None
    actor_id: str | None = None


class CommitmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    fund_id: uuid.UUID
    lender_id: uuid.UUID
    committed_amount: Decimal
    called_amount: Decimal
    distributed_amount: Decimal
    status: CommitmentStatus
    commitment_date: date


class CapitalCallCreate(BaseModel):
    call_number: int = Field(ge=1)
    amount: Money
    due_date: date
    purpose: str | None = None
    notes: str | None = None
    actor_id: str | None = None


class CapitalReceive(BaseModel):
    received_date: date | None = None
    actor_id: str | None = None


class CapitalCallOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    fund_id: uuid.UUID
    call_number: int
    call_amount: Decimal
    received_amount: Decimal
    due_date: date
    funded_date: date | None
    status: CapitalCallStatus
    purpose: str | None


class AllocationCreate(BaseModel):
    loan_id: uuid.UUID
    amount: Money
    allocation_date: date | None = None
    actor_id: str | None = None


class CapitalReturnCreate(BaseModel):
    amount: Money
    return_date: date | None = None
    actor_id: str | None = None


class AllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    fund_id: uuid.UUID
    loan_id: uuid.UUID
    allocated_amount: Decimal
    returned_amount: Decimal
    allocation_date: date
    full_return_date: date | None


class DistributionCreate(BaseModel):
    total_amount: Money
    distribution_date: date | None = None
    distribution_type: DistributionType = DistributionType.return_of_capital
    notes: str | None = None
    actor_id: str | None = None


class DistributionLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    commitment_id: uuid.UUID
    lender_id: uuid.UUID
    amount: Decimal


class DistributionOut(BaseModel):
    id: uuid.UUID
    fund_id: uuid.UUID
    distribution_date: date
    total_amount: Decimal
    distribution_type: DistributionType
    status: DistributionStatus
    lines: list[DistributionLineOut]


class FundPositionOut(BaseModel):
    fund_id: uuid.UUID
    total_capacity: Decimal
    total_committed: Decimal
    total_called: Decimal
    total_received: Decimal
    total_allocated: Decimal
    total_returned: Decimal
    total_distributed: Decimal
    outstanding_deployed: Decimal
    available_capital: Decimal
    uncalled_capital: Decimal
    deployment_rate: Decimal
    return_rate: Decimal
    capacity_utilization: Decimal
    moic: Decimal | None
    irr: float | None
