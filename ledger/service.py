from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from uuid import UUID, uuid4

from common.clock import Clock, utcnow
from common.errors import InsufficientFundsError, NotFoundError, StateConflictError, ValidationError
from common.identifiers import check_page, ensure_uuid
from common.logging import get_logger
from common.storage import WALLET_TRANSACTIONS, WALLETS, InMemoryStorage, UnitOfWork

from .models import (
    LedgerPosting,
    LedgerReconciliation,
    TransactionHistoryResponse,
    TransactionType,
    Wallet,
    WalletTransaction,
)

logger = get_logger(__name__)

Amount = Union[Decimal, int, str, float]


def wallet_lock_key(reseller_id: UUID) -> str:
    return f"wallet:{reseller_id}"


def parse_amount(amount: Amount) -> Decimal:
    """Coerce ``amount`` to a positive Decimal, keeping full precision."""
    if isinstance(amount, bool) or amount is None:
        raise ValidationError("Amount must be a positive number")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than zero")
    return value


class LedgerService:
    """Wallet balances and their append-only transaction log.

    Each posting writes the transaction row and the new wallet totals in one
    atomic unit, serialized per wallet, so ``balance`` always equals the
    running sum of the log.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None, clock: Optional[Clock] = None):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow

    def credit_wallet(
        self,
        reseller_id: Union[UUID, str],
        amount: Amount,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> LedgerPosting:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        amount = parse_amount(amount)

        with self.storage.atomic(wallet_lock_key(reseller_id)) as uow:
            now = self.clock()
            wallet_data = uow.find_one(WALLETS, reseller_id=reseller_id)
            if wallet_data is None:
                wallet_data = uow.insert(WALLETS, self._new_wallet(reseller_id, now))
                logger.info("wallet_created", reseller_id=str(reseller_id), wallet_id=str(wallet_data["id"]))
            elif reference:
                replay = self._replay(uow, wallet_data, TransactionType.CREDIT, reference, amount)
                if replay:
                    return replay

            entry_data = self._post(uow, wallet_data, TransactionType.CREDIT, amount,
                                    description or "Wallet credit", reference, now)
            wallet_data["credit_total"] += amount
            wallet_data = uow.update(WALLETS, wallet_data)

        logger.info(
            "wallet_credited",
            reseller_id=str(reseller_id),
            wallet_id=str(wallet_data["id"]),
            amount=str(amount),
            balance=str(wallet_data["balance"]),
            reference=reference,
        )
        return LedgerPosting(wallet=Wallet(**wallet_data), transaction=WalletTransaction(**entry_data))

    def debit_wallet(
        self,
        reseller_id: Union[UUID, str],
        amount: Amount,
        description: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> LedgerPosting:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        amount = parse_amount(amount)

        with self.storage.atomic(wallet_lock_key(reseller_id)) as uow:
            wallet_data = uow.find_one(WALLETS, reseller_id=reseller_id)
            if wallet_data is None:
                raise NotFoundError(f"Wallet not found for reseller {reseller_id}")

            if reference:
                replay = self._replay(uow, wallet_data, TransactionType.DEBIT, reference, amount)
                if replay:
                    return replay

            if amount > wallet_data["balance"]:
                raise InsufficientFundsError(
                    "Insufficient wallet balance",
                    balance=wallet_data["balance"],
                    requested=amount,
                )

            entry_data = self._post(uow, wallet_data, TransactionType.DEBIT, amount,
                                    description or "Wallet debit", reference, self.clock())
            wallet_data["debit_total"] += amount
            wallet_data = uow.update(WALLETS, wallet_data)

        logger.info(
            "wallet_debited",
            reseller_id=str(reseller_id),
            wallet_id=str(wallet_data["id"]),
            amount=str(amount),
            balance=str(wallet_data["balance"]),
            reference=reference,
        )
        return LedgerPosting(wallet=Wallet(**wallet_data), transaction=WalletTransaction(**entry_data))

    def get_wallet(self, reseller_id: Union[UUID, str]) -> Optional[Wallet]:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        wallet_data = self.storage.find_one(WALLETS, reseller_id=reseller_id)
        return Wallet(**wallet_data) if wallet_data else None

    def get_wallet_by_id(self, wallet_id: Union[UUID, str]) -> Wallet:
        wallet_id = ensure_uuid(wallet_id, "wallet ID")
        wallet_data = self.storage.get(WALLETS, wallet_id)
        if not wallet_data:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return Wallet(**wallet_data)

    def get_transactions(
        self, wallet_id: Union[UUID, str], limit: Optional[int] = None, offset: int = 0
    ) -> TransactionHistoryResponse:
        check_page(limit, offset)
        wallet = self.get_wallet_by_id(wallet_id)
        entries = self._newest_first(self.storage.find(WALLET_TRANSACTIONS, wallet_id=wallet.id))
        page = entries[offset:offset + limit] if limit is not None else entries[offset:]
        return TransactionHistoryResponse(
            wallet_id=wallet.id,
            transactions=page,
            total_count=len(entries),
            current_balance=wallet.balance,
        )

    def get_all_transactions(self, reseller_id: Union[UUID, str, None] = None) -> list[WalletTransaction]:
        if reseller_id is None:
            return self._newest_first(self.storage.find(WALLET_TRANSACTIONS))
        wallet = self.get_wallet(reseller_id)
        if wallet is None:
            return []
        return self._newest_first(self.storage.find(WALLET_TRANSACTIONS, wallet_id=wallet.id))

    def reconcile(self, wallet_id: Union[UUID, str]) -> LedgerReconciliation:
        wallet = self.get_wallet_by_id(wallet_id)
        entries = [WalletTransaction(**e) for e in self.storage.find(WALLET_TRANSACTIONS, wallet_id=wallet.id)]
        credits = sum((e.amount for e in entries if e.type == TransactionType.CREDIT), Decimal("0"))
        debits = sum((e.amount for e in entries if e.type == TransactionType.DEBIT), Decimal("0"))

        result = LedgerReconciliation(
            wallet_id=wallet.id,
            stored_balance=wallet.balance,
            computed_balance=sum((e.signed_amount for e in entries), Decimal("0")),
            credit_total=credits,
            debit_total=debits,
            transaction_count=len(entries),
        )
        if not result.balanced:
            logger.error(
                "wallet_out_of_balance",
                wallet_id=str(wallet.id),
                stored=str(result.stored_balance),
                computed=str(result.computed_balance),
            )
        return result

    def _new_wallet(self, reseller_id: UUID, now: datetime) -> dict:
        return {
            "id": uuid4(),
            "reseller_id": reseller_id,
            "user_type": "RESELLER",
            "balance": Decimal("0"),
            "credit_total": Decimal("0"),
            "debit_total": Decimal("0"),
            "last_transaction_at": None,
            "created_at": now,
            "updated_at": now,
        }

    def _post(
        self,
        uow: UnitOfWork,
        wallet_data: dict,
        entry_type: TransactionType,
        amount: Decimal,
        description: str,
        reference: Optional[str],
        now: datetime,
    ) -> dict:
        balance_before = wallet_data["balance"]
        balance_after = balance_before + amount if entry_type == TransactionType.CREDIT else balance_before - amount
        sequence = len(uow.find(WALLET_TRANSACTIONS, wallet_id=wallet_data["id"])) + 1

        entry_data = {
            "id": uuid4(),
            "wallet_id": wallet_data["id"],
            "type": entry_type,
            "amount": amount,
            "balance_before": balance_before,
            "balance_after": balance_after,
            "description": description,
            "reference": reference,
            "sequence": sequence,
            "created_at": now,
        }
        uow.insert(WALLET_TRANSACTIONS, entry_data)

        wallet_data["balance"] = balance_after
        wallet_data["last_transaction_at"] = now
        wallet_data["updated_at"] = now
        return entry_data

    def _replay(
        self,
        uow: UnitOfWork,
        wallet_data: dict,
        entry_type: TransactionType,
        reference: str,
        amount: Decimal,
    ) -> Optional[LedgerPosting]:
        existing = uow.find_one(WALLET_TRANSACTIONS, wallet_id=wallet_data["id"], type=entry_type, reference=reference)
        if not existing:
            return None
        if existing["amount"] != amount:
            logger.warning(
                "ledger_reference_conflict",
                wallet_id=str(wallet_data["id"]),
                reference=reference,
                recorded=str(existing["amount"]),
                requested=str(amount),
            )
            raise StateConflictError(f"Reference {reference} already used for a different amount")
        logger.info("ledger_reference_replayed", wallet_id=str(wallet_data["id"]), reference=reference)
        return LedgerPosting(
            wallet=Wallet(**wallet_data),
            transaction=WalletTransaction(**existing),
            replayed=True,
        )

    @staticmethod
    def _newest_first(rows: list[dict]) -> list[WalletTransaction]:
        entries = [WalletTransaction(**row) for row in rows]
        entries.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        return entries
