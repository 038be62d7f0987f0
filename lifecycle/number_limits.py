from typing import Optional, Union
from uuid import UUID, uuid4

from common.clock import Clock, utcnow
from common.errors import ValidationError
from common.identifiers import ensure_uuid
from common.logging import get_logger
from common.storage import NUMBER_LIMITS, InMemoryStorage

from .models import NumberLimit

logger = get_logger(__name__)


class NumberLimitRegister:
    """Per-reseller cap on virtual numbers, read by provisioning."""

    def __init__(self, storage: Optional[InMemoryStorage] = None, clock: Optional[Clock] = None):
        self.storage = storage or InMemoryStorage()
        self.clock = clock or utcnow

    def upsert(self, reseller_id: Union[UUID, str], max_virtual_numbers: int) -> NumberLimit:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        if isinstance(max_virtual_numbers, bool) or not isinstance(max_virtual_numbers, int) \
                or max_virtual_numbers < 0:
            raise ValidationError("Invalid max virtual numbers value")

        with self.storage.atomic(f"number_limit:{reseller_id}") as uow:
            now = self.clock()
            row = uow.find_one(NUMBER_LIMITS, reseller_id=reseller_id)
            if row:
                row.update(max_virtual_numbers=max_virtual_numbers, updated_at=now)
                row = uow.update(NUMBER_LIMITS, row)
            else:
                row = uow.insert(NUMBER_LIMITS, {
                    "id": uuid4(),
                    "reseller_id": reseller_id,
                    "max_virtual_numbers": max_virtual_numbers,
                    "created_at": now,
                    "updated_at": now,
                })

        logger.info("number_limit_set", reseller_id=str(reseller_id), max_virtual_numbers=max_virtual_numbers)
        return NumberLimit(**row)

    def get(self, reseller_id: Union[UUID, str]) -> Optional[NumberLimit]:
        reseller_id = ensure_uuid(reseller_id, "reseller ID")
        row = self.storage.find_one(NUMBER_LIMITS, reseller_id=reseller_id)
        return NumberLimit(**row) if row else None
