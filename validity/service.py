from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

from common.clock import Clock, utcnow
from common.config import settings
from common.errors import NotFoundError, ValidationError
from common.identifiers import check_page, ensure_uuid
from common.logging import get_logger
from common.storage import VALIDITY, VALIDITY_HISTORY, InMemoryStorage, UnitOfWork

from .models import (
    ValidityAction,
    ValidityChange,
    ValidityHistory,
    ValidityHistoryCreate,
    ValidityRecord,
    ValidityStatus,
    ValidityUpsert,
    end_of_day,
    window_days,
)

logger = get_logger(__name__)


def validity_lock_key(reseller_id: UUID) -> str:
    return f"validity:{reseller_id}"


class ValidityService:
    """Current validity window per reseller plus its append-only history.

    Window policy: a recharge without an operator date resets the window to
    ``now + default_days``; an operator-supplied date sets an absolute end at
    the end of that day, keeping the existing start.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        clock: Optional[Clock] = None,
        default_days: Optional[int] = None,
    ):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow
        self.default_days = default_days or settings.default_validity_days

    def get_validity(self, reseller_id: Union[UUID, str]) -> Optional[ValidityRecord]:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        data = self.storage.find_one(VALIDITY, reseller_id=reseller_id)
        return ValidityRecord(**data) if data else None

    def get_history(self, reseller_id: Union[UUID, str], limit: Optional[int] = None) -> list[ValidityHistory]:
        check_page(limit)
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        entries = [ValidityHistory(**row) for row in self.storage.find(VALIDITY_HISTORY, reseller_id=reseller_id)]
        entries.sort(key=lambda h: h.sequence, reverse=True)
        return entries[:limit] if limit is not None else entries

    def upsert_validity(self, data: ValidityUpsert) -> ValidityRecord:
        with self.storage.atomic(validity_lock_key(data.reseller_id)) as uow:
            return self._upsert(uow, data)

    def record_history(self, data: ValidityHistoryCreate) -> ValidityHistory:
        with self.storage.atomic(validity_lock_key(data.reseller_id)) as uow:
            return self._insert_history(uow, data)

    def update_on_recharge(
        self,
        reseller_id: Union[UUID, str],
        wallet_id: Union[UUID, str],
        amount: Decimal,
        action: ValidityAction = ValidityAction.WALLET_RECHARGE_RESET,
        default_days: Optional[int] = None,
    ) -> ValidityChange:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        wallet_id = ensure_uuid(wallet_id, "wallet ID")
        days = default_days or self.default_days
        if days <= 0:
            raise ValidationError("Validity days must be greater than zero")

        with self.storage.atomic(validity_lock_key(reseller_id)) as uow:
            start = self.clock()
            change = self._apply_window(
                uow, reseller_id, start, start + timedelta(days=days), action, wallet_id, amount
            )

        logger.info(
            "validity_reset",
            reseller_id=str(reseller_id),
            action=action.value,
            days=days,
            end_date=change.validity.end_date.isoformat(),
        )
        return change

    def set_explicit_end(
        self,
        reseller_id: Union[UUID, str],
        end_date: Union[date, datetime],
        action: ValidityAction = ValidityAction.ADMIN_UPDATE,
        wallet_id: Union[UUID, str, None] = None,
        amount: Optional[Decimal] = None,
    ) -> ValidityChange:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        if wallet_id is not None:
            wallet_id = ensure_uuid(wallet_id, "wallet ID")
        end = end_of_day(end_date)

        with self.storage.atomic(validity_lock_key(reseller_id)) as uow:
            current = uow.find_one(VALIDITY, reseller_id=reseller_id)
            start = current["start_date"] if current else self.clock()
            if window_days(start, end) <= 0:
                raise ValidationError("Validity end date must fall after the validity start date")
            change = self._apply_window(uow, reseller_id, start, end, action, wallet_id, amount)

        logger.info(
            "validity_set",
            reseller_id=str(reseller_id),
            action=action.value,
            days=change.validity.days,
            end_date=change.validity.end_date.isoformat(),
        )
        return change

    def set_status(self, reseller_id: Union[UUID, str], status: ValidityStatus) -> ValidityRecord:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        with self.storage.atomic(validity_lock_key(reseller_id)) as uow:
            data = uow.find_one(VALIDITY, reseller_id=reseller_id)
            if data is None:
                raise NotFoundError(f"Validity not found for reseller {reseller_id}")
            data["status"] = status
            data["updated_at"] = self.clock()
            data = uow.update(VALIDITY, data)
        return ValidityRecord(**data)

    def mark_expired(self, now: Optional[datetime] = None) -> list[ValidityRecord]:
        now = now or self.clock()
        expired = []
        for candidate in self.storage.find(VALIDITY, status=ValidityStatus.ACTIVE):
            with self.storage.atomic(validity_lock_key(candidate["reseller_id"])) as uow:
                data = uow.get(VALIDITY, candidate["id"])
                if data["status"] != ValidityStatus.ACTIVE or data["end_date"] >= now:
                    continue
                data["status"] = ValidityStatus.EXPIRED
                data["updated_at"] = now
                expired.append(ValidityRecord(**uow.update(VALIDITY, data)))

        if expired:
            logger.info("validity_expired", count=len(expired))
        return expired

    def _apply_window(
        self,
        uow: UnitOfWork,
        reseller_id: UUID,
        start: datetime,
        end: datetime,
        action: ValidityAction,
        wallet_id: Optional[UUID],
        amount: Optional[Decimal],
    ) -> ValidityChange:
        current = uow.find_one(VALIDITY, reseller_id=reseller_id)
        # A suspended window stays suspended until the reseller is reactivated.
        status = (
            ValidityStatus.SUSPENDED
            if current and current["status"] == ValidityStatus.SUSPENDED
            else ValidityStatus.ACTIVE
        )
        validity = self._upsert(uow, ValidityUpsert(
            reseller_id=reseller_id,
            start_date=start,
            end_date=end,
            wallet_id=wallet_id or (current["last_wallet_id"] if current else None),
            recharge_amount=amount if amount is not None else (current["last_recharge_amount"] if current else None),
            status=status,
        ))
        history = self._insert_history(uow, ValidityHistoryCreate(
            reseller_id=reseller_id,
            wallet_id=wallet_id,
            recharge_amount=amount or Decimal("0"),
            previous_start=current["start_date"] if current else None,
            previous_end=current["end_date"] if current else None,
            new_start=validity.start_date,
            new_end=validity.end_date,
            days=validity.days,
            action=action,
        ))
        return ValidityChange(validity=validity, history=history)

    def _upsert(self, uow: UnitOfWork, data: ValidityUpsert) -> ValidityRecord:
        days = window_days(data.start_date, data.end_date)
        if days <= 0:
            raise ValidationError("Validity window must span at least one day")
        if data.days is not None and data.days != days:
            raise ValidationError(f"Validity days {data.days} do not match the window ({days} days)")

        now = self.clock()
        current = uow.find_one(VALIDITY, reseller_id=data.reseller_id)
        row = current or {"id": uuid4(), "reseller_id": data.reseller_id, "created_at": now}
        row.update(
            start_date=data.start_date,
            end_date=data.end_date,
            days=days,
            last_wallet_id=data.wallet_id,
            last_recharge_amount=data.recharge_amount,
            status=data.status,
            updated_at=now,
        )
        row = uow.update(VALIDITY, row) if current else uow.insert(VALIDITY, row)
        return ValidityRecord(**row)

    def _insert_history(self, uow: UnitOfWork, data: ValidityHistoryCreate) -> ValidityHistory:
        sequence = len(uow.find(VALIDITY_HISTORY, reseller_id=data.reseller_id)) + 1
        row = {
            "id": uuid4(),
            **data.model_dump(),
            "sequence": sequence,
            "created_at": self.clock(),
        }
        return ValidityHistory(**uow.insert(VALIDITY_HISTORY, row))
