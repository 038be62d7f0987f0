from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from common.auth import ActorContext
from common.storage import InMemoryStorage
from lifecycle.models import ResellerCreate
from lifecycle.service import LifecycleService

ADMIN_ID = UUID("9b2f6a1e-4c3d-4e8f-9a7b-1c2d3e4f5a6b")
RESELLER_ID = UUID("550e8400-e29b-41d4-a716-446655440000")
OTHER_RESELLER_ID = UUID("660e8400-e29b-41d4-a716-446655440001")


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext.super_admin(ADMIN_ID)


@pytest.fixture
def service(storage: InMemoryStorage, clock: FakeClock) -> LifecycleService:
    return LifecycleService(storage=storage, clock=clock)


@pytest.fixture
def pending_reseller(service: LifecycleService, admin: ActorContext):
    return service.register_reseller(
        admin, ResellerCreate(reseller_id=RESELLER_ID, business_name="Acme Telecom", email="ops@acme.test")
    ).unwrap()
