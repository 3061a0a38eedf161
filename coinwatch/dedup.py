"""
Notification deduplication with a self-pruning cooldown cache.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)


class DedupKey(NamedTuple):
    """Identifies repeated firings: one tenant, one coin, one alert kind."""

    tenant: str
    symbol: str
    kind: str


class NotificationDeduplicator:
    """Suppresses repeated notifications for the same key within a cooldown.

    Shared by every tenant tick, so each check-and-record happens under a
    single lock. Entries older than the retention horizon are purged on
    every record; there is no background cleanup task.
    """

    def __init__(
        self,
        cooldown: timedelta = timedelta(minutes=30),
        retention: timedelta = timedelta(hours=2),
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize deduplicator.

        Args:
            cooldown: How long a recorded key suppresses new firings
            retention: Age after which an entry is purged
            clock: Current-time function, replaced in tests
        """
        if retention < cooldown:
            raise ValueError("Retention must not be shorter than cooldown")
        self.cooldown = cooldown
        self.retention = retention
        self._clock = clock
        self._last_fired: dict[DedupKey, datetime] = {}
        self._lock = threading.Lock()

    def try_fire(self, key: DedupKey) -> bool:
        """
        Atomically check the cooldown and record a firing.

        Returns:
            True if the caller may notify, False if suppressed
        """
        with self._lock:
            now = self._clock()
            if self._in_cooldown(key, now):
                logger.debug(f"Notification in cooldown: {key}")
                return False
            self._record(key, now)
            return True

    def should_suppress(self, key: DedupKey) -> bool:
        """Check whether a key is still in cooldown."""
        with self._lock:
            return self._in_cooldown(key, self._clock())

    def record(self, key: DedupKey) -> None:
        """Record a firing for a key."""
        with self._lock:
            self._record(key, self._clock())

    def prune(self) -> int:
        """Purge entries older than the retention horizon.

        Returns:
            Number of entries removed
        """
        with self._lock:
            return self._prune(self._clock())

    def last_fired(self, key: DedupKey) -> Optional[datetime]:
        with self._lock:
            return self._last_fired.get(key)

    def clear(self) -> None:
        with self._lock:
            self._last_fired.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_fired)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._last_fired

    def _in_cooldown(self, key: DedupKey, now: datetime) -> bool:
        last = self._last_fired.get(key)
        return last is not None and now < last + self.cooldown

    def _record(self, key: DedupKey, now: datetime) -> None:
        self._last_fired[key] = now
        self._prune(now)

    def _prune(self, now: datetime) -> int:
        cutoff = now - self.retention
        stale = [k for k, fired_at in self._last_fired.items() if fired_at < cutoff]
        for k in stale:
            del self._last_fired[k]
        if stale:
            logger.debug(f"Pruned {len(stale)} expired notification entries")
        return len(stale)
