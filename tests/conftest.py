from __future__ import annotations

import pytest
from fakes import FakeClock, FakeMessenger, FakeTable

from dropbot.ledger import RewardLedger
from dropbot.storage import DropStorage


@pytest.fixture()
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture()
def storage(table: FakeTable) -> DropStorage:
    return DropStorage(table)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def messenger() -> FakeMessenger:
    return FakeMessenger()


@pytest.fixture()
def ledger(storage: DropStorage, clock: FakeClock) -> RewardLedger:
    return RewardLedger(storage, clock=clock)
