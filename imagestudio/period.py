from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import NamedTuple


class Period(NamedTuple):
    year: int
    month: int

    def __str__(self) -> str:
        return f"{self.year}-{self.month}"

    def next_start(self) -> datetime:
        if self.month == 12:
            return datetime(self.year + 1, 1, 1, tzinfo=timezone.utc)
        return datetime(self.year, self.month + 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def current_period(now: datetime | None = None) -> Period:
    value = now if now is not None else utcnow()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return Period(value.year, value.month)


def seconds_until_next_period(now: datetime | None = None, period: Period | None = None) -> int:
    value = now if now is not None else utcnow()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    target = period if period is not None else current_period(value)
    remaining = (target.next_start() - value).total_seconds()
    return max(1, int(math.ceil(remaining)))
