from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from subledger.auth.deps import AllowAllAuthOracle
from subledger.core.time import ManualClock
from subledger.ledger import SubscriptionLedger
from subledger.services.store import MemoryLedgerStore

T0 = 1_700_000_000
DAY = 86400


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def auth() -> AllowAllAuthOracle:
    return AllowAllAuthOracle()


@pytest.fixture
def ledger(store, auth, clock) -> SubscriptionLedger:
    led = SubscriptionLedger(store, auth, clock)
    led.initialize()
    return led
