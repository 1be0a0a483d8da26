from datetime import datetime, timedelta, timezone

import pytest

from siivi.device import EnvironmentSnapshot
from siivi.errors import RemoteError
from siivi.functions import install
from siivi.gateway import DemoGateway
from siivi.remote import InMemoryRemoteStore
from siivi.store import InMemoryStorage


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FlakyRemoteStore(InMemoryRemoteStore):
    """In-memory backend that records every call and can be told to fail."""

    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.calls = []
        self._failures = {}

    def fail(self, op: str, name: str, times: int = 1) -> None:
        """Make the next `times` calls of `op` on `name` raise RemoteError (-1: forever)."""
        self._failures[(op, name)] = times

    def _check(self, op: str, name: str) -> None:
        self.calls.append((op, name))
        left = self._failures.get((op, name), 0)
        if left:
            if left > 0:
                self._failures[(op, name)] = left - 1
            raise RemoteError(f"{op} {name} failed", name)

    def insert(self, table, row):
        self._check("insert", table)
        return super().insert(table, row)

    def select(self, table, filters=None, order_by=None, desc=False):
        self._check("select", table)
        return super().select(table, filters, order_by, desc)

    def update(self, table, values, filters=None):
        self._check("update", table)
        return super().update(table, values, filters)

    def delete(self, table, filters=None):
        self._check("delete", table)
        return super().delete(table, filters)

    def invoke(self, function, body):
        self._check("invoke", function)
        return super().invoke(function, body)

    def writes(self):
        return [c for c in self.calls if c[0] in ("insert", "update", "delete")]

    def rows(self, table):
        return InMemoryRemoteStore.select(self, table)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def gateway():
    return DemoGateway()


@pytest.fixture
def remote(clock, gateway):
    store = FlakyRemoteStore(clock)
    install(store, gateway, clock)
    return store


@pytest.fixture
def env():
    return EnvironmentSnapshot(
        canvas_data="data:image/png;base64,AAAA",
        user_agent="Mozilla/5.0 (X11; Linux x86_64)",
        language="en-US",
        screen_width=1920,
        screen_height=1080,
        timezone_offset=-120,
    )
