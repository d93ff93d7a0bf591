from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from threading import Lock, RLock
from typing import Callable, Iterator

from imagestudio.period import Period, current_period

logger = logging.getLogger("image-studio.ledger")


@dataclass(frozen=True)
class UsageRecord:
    period: Period
    count: int = 0


class UsageLedger:
    """Per-identity monthly usage counters held in process memory.

    Entries are never evicted. A record from an earlier period is reset to zero
    the first time its identity is touched in a new period.
    """

    def __init__(self, clock: Callable[[], Period] = current_period):
        self._clock = clock
        self._records: dict[str, UsageRecord] = {}
        self._locks: dict[str, RLock] = {}
        self._locks_guard = Lock()

    def _lock_for(self, identity: str) -> RLock:
        with self._locks_guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = RLock()
                self._locks[identity] = lock
            return lock

    def period(self) -> Period:
        return self._clock()

    @contextmanager
    def hold(self, identity: str) -> Iterator[None]:
        with self._lock_for(identity):
            yield

    def _current_locked(self, identity: str) -> UsageRecord:
        period = self._clock()
        record = self._records.get(identity)
        if record is None or record.period != period:
            if record is not None:
                logger.debug(
                    "Usage window for '%s' rolled over from %s to %s",
                    identity,
                    record.period,
                    period,
                )
            record = UsageRecord(period=period, count=0)
            self._records[identity] = record
        return record

    def get_or_init(self, identity: str) -> UsageRecord:
        with self.hold(identity):
            return self._current_locked(identity)

    def increment(self, identity: str) -> UsageRecord:
        with self.hold(identity):
            record = self._current_locked(identity)
            updated = replace(record, count=record.count + 1)
            self._records[identity] = updated
            return updated

    def peek(self, identity: str) -> UsageRecord | None:
        with self.hold(identity):
            record = self._records.get(identity)
            if record is None:
                return None
            period = self._clock()
            if record.period != period:
                return UsageRecord(period=period, count=0)
            return record

    def __contains__(self, identity: object) -> bool:
        return identity in self._records

    def __len__(self) -> int:
        return len(self._records)
