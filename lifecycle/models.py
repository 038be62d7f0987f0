from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from common.identifiers import is_canonical_id
from ledger.models import LedgerPosting
from validity.models import ValidityChange


class ResellerState(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class Reseller(BaseModel):
    id: UUID
    business_name: str
    email: Optional[str] = None
    status: bool = False
    approval_date: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    rejection_reason: Optional[str] = None
    suspended_at: Optional[datetime] = None
    suspended_by: Optional[UUID] = None
    suspended_reason: Optional[str] = None
    grace_period_days: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def state(self) -> ResellerState:
        if self.suspended_at is not None:
            return ResellerState.SUSPENDED
        if self.rejection_reason is not None:
            return ResellerState.REJECTED
        if self.approval_date is not None:
            return ResellerState.APPROVED
        return ResellerState.PENDING


class NumberLimit(BaseModel):
    id: UUID
    reseller_id: UUID
    max_virtual_numbers: int = Field(..., ge=0)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResellerCreate(BaseModel):
    business_name: str = Field(..., min_length=1)
    email: Optional[str] = None
    reseller_id: Optional[UUID] = None

    @field_validator("reseller_id", mode="before")
    @classmethod
    def _canonical_id(cls, value):
        if value is not None and not is_canonical_id(value):
            raise ValueError("Invalid reseller ID format")
        return value


class ApproveResellerRequest(BaseModel):
    wallet_balance: Optional[Decimal] = None
    grace_period_days: Optional[int] = None
    number_limit_count: Optional[int] = None
    validity_date: Optional[date] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "wallet_balance": 1000.00,
            "grace_period_days": 7,
            "number_limit_count": 25,
            "validity_date": "2027-03-31",
        }
    })


class ReasonRequest(BaseModel):
    reason: str = Field(..., description="At least 10 characters once trimmed")


class SetActiveRequest(BaseModel):
    active: bool


class RechargeRequest(BaseModel):
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = Field(default=None, description="Idempotency tag for the posting")
    validity_date: Optional[date] = None


class ChargeRequest(BaseModel):
    amount: Decimal
    description: Optional[str] = None
    reference: Optional[str] = None


class ValidityUpdateRequest(BaseModel):
    validity_date: date


class NumberLimitRequest(BaseModel):
    max_virtual_numbers: int


class ApprovalOutcome(BaseModel):
    reseller: Reseller
    posting: Optional[LedgerPosting] = None
    validity: Optional[ValidityChange] = None
    number_limit: Optional[NumberLimit] = None


class RechargeOutcome(BaseModel):
    posting: LedgerPosting
    validity: Optional[ValidityChange] = None
