from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

ONE_DAY = timedelta(days=1)


class ValidityStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"


class ValidityAction(str, Enum):
    RESELLER_APPROVAL = "RESELLER_APPROVAL"
    WALLET_RECHARGE_RESET = "WALLET_RECHARGE_RESET"
    WALLET_RECHARGE = "WALLET_RECHARGE"
    ADMIN_UPDATE = "ADMIN_UPDATE"


def window_days(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded up."""
    return -((start - end) // ONE_DAY)


def end_of_day(value: Union[date, datetime]) -> datetime:
    """Last microsecond of the UTC calendar day ``value`` falls on."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        value = value.date()
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


class ValidityRecord(BaseModel):
    id: UUID
    reseller_id: UUID
    start_date: datetime
    end_date: datetime
    days: int
    last_wallet_id: Optional[UUID] = None
    last_recharge_amount: Optional[Decimal] = None
    status: ValidityStatus = ValidityStatus.ACTIVE
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _days_match_window(self):
        if self.days != window_days(self.start_date, self.end_date):
            raise ValueError("days must equal the window length rounded up")
        return self

    def is_lapsed(self, now: datetime) -> bool:
        return self.end_date < now


class ValidityHistory(BaseModel):
    id: UUID
    reseller_id: UUID
    wallet_id: Optional[UUID] = None
    recharge_amount: Decimal = Decimal("0")
    previous_start: Optional[datetime] = None
    previous_end: Optional[datetime] = None
    new_start: datetime
    new_end: datetime
    days: int
    action: ValidityAction
    sequence: int = Field(..., ge=1)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ValidityUpsert(BaseModel):
    reseller_id: UUID
    start_date: datetime
    end_date: datetime
    days: Optional[int] = None
    wallet_id: Optional[UUID] = None
    recharge_amount: Optional[Decimal] = None
    status: ValidityStatus = ValidityStatus.ACTIVE


class ValidityHistoryCreate(BaseModel):
    reseller_id: UUID
    wallet_id: Optional[UUID] = None
    recharge_amount: Decimal = Decimal("0")
    previous_start: Optional[datetime] = None
    previous_end: Optional[datetime] = None
    new_start: datetime
    new_end: datetime
    days: int
    action: ValidityAction


class ValidityChange(BaseModel):
    validity: ValidityRecord
    history: ValidityHistory
