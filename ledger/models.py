from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class Wallet(BaseModel):
    id: UUID
    reseller_id: UUID
    user_type: str = "RESELLER"
    balance: Decimal = Field(default=Decimal("0"), ge=0)
    credit_total: Decimal = Field(default=Decimal("0"), ge=0)
    debit_total: Decimal = Field(default=Decimal("0"), ge=0)
    last_transaction_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_balance(self) -> str:
        return str(self.balance.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class WalletTransaction(BaseModel):
    id: UUID
    wallet_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    balance_before: Decimal
    balance_after: Decimal
    description: str
    reference: Optional[str] = None
    sequence: int = Field(..., ge=1)  # per-wallet write order
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == TransactionType.CREDIT else -self.amount


class LedgerPosting(BaseModel):
    wallet: Wallet
    transaction: WalletTransaction
    replayed: bool = False


class TransactionHistoryResponse(BaseModel):
    wallet_id: UUID
    transactions: list[WalletTransaction]
    total_count: int
    current_balance: Decimal


class LedgerReconciliation(BaseModel):
    wallet_id: UUID
    stored_balance: Decimal
    computed_balance: Decimal
    credit_total: Decimal
    debit_total: Decimal
    transaction_count: int

    @computed_field
    @property
    def balanced(self) -> bool:
        return self.stored_balance == self.computed_balance
