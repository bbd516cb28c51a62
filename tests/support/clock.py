from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


@dataclass
class FakeClock:
    """
    Minimal deterministic clock for tests.

    `step` moves time forward on every read, which makes "later than"
    assertions meaningful without sleeping.
    """

    now_utc: datetime
    step: timedelta = timedelta(0)

    @classmethod
    def fixed(cls, *, year: int = 2026, month: int = 1, day: int = 1) -> "FakeClock":
        return cls(now_utc=datetime(year, month, day, 0, 0, 0, tzinfo=timezone.utc))

    @classmethod
    def ticking(cls, step: timedelta = timedelta(seconds=1)) -> "FakeClock":
        clock = cls.fixed()
        clock.step = step
        return clock

    def now(self) -> datetime:
        current = self.now_utc
        self.now_utc = self.now_utc + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now_utc = self.now_utc + delta
