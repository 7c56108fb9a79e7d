"""
Shared fixtures: an in-memory cooperative with a controllable clock
"""

import pytest
from datetime import datetime, timedelta, timezone

from coop_banking.config import CoopConfig
from coop_banking.storage import InMemoryStorage
from coop_banking.system import CoopBankingSystem


class FixedClock:
    """Clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    storage = InMemoryStorage()
    storage.save("users", "USER001", {"id": "USER001", "name": "Amina Mwangi"})
    storage.save("users", "USER002", {"id": "USER002", "name": "Peter Otieno"})
    yield storage
    storage.close()


@pytest.fixture
def system(storage, clock):
    config = CoopConfig(storage_backend="memory", enable_audit_logging=True)
    return CoopBankingSystem(storage=storage, config=config, clock=clock)
