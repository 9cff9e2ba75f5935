from __future__ import annotations

import time
from typing import Protocol

SECONDS_PER_DAY = 86400


def now_ts() -> int:
    return int(time.time())


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    def now(self) -> int:
        return now_ts()


class ManualClock:
    """Clock whose value only moves when told to. Never goes backwards."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, ts: int) -> None:
        ts = int(ts)
        if ts < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = ts

    def advance(self, seconds: int = 0, *, days: int = 0) -> int:
        self.set(self._now + int(seconds) + int(days) * SECONDS_PER_DAY)
        return self._now
