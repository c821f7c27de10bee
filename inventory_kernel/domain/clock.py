"""
Time sources.

Nothing in the ledger, the reconciliation service or the sync tracker reads
the wall clock directly.  Stale-run takeover, consignment ageing and retry
leases all compare against ``clock.now()``, which tests pin with
DeterministicClock.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol

DEFAULT_TEST_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class Clock(Protocol):
    def now(self) -> datetime:
        """Timezone-aware UTC time."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock:
    """
    Frozen time that moves only when a test calls ``advance``.

    Shared across worker threads in the concurrency tests, hence the lock.
    """

    def __init__(self, start: datetime = DEFAULT_TEST_TIME):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware datetime")
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, seconds: float = 1) -> datetime:
        with self._lock:
            self._now += timedelta(seconds=seconds)
            return self._now
