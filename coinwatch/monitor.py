"""
Per-tenant monitoring sessions.

Each tenant gets one session that runs the tick callable immediately and
then at a fixed rate on a shared, bounded worker pool. A session's ticks
never overlap: a tick that comes due while the previous one is still
running is skipped.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TickFn = Callable[[str, str], object]


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view of a tenant's monitoring state."""

    tenant_key: str
    active: bool
    total_active_sessions: int
    timestamp: datetime


class MonitorSession:
    """One tenant's periodic monitoring task."""

    def __init__(
        self,
        tenant_key: str,
        recipient: str,
        interval: float,
        tick_lock: Optional[threading.Lock] = None,
    ):
        self.tenant_key = tenant_key
        self.recipient = recipient
        self.interval = interval
        self.tick_lock = tick_lock if tick_lock is not None else threading.Lock()
        self._state_lock = threading.Lock()
        self._cancelled = False
        self._done = False
        self._timer: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._done

    def is_active(self) -> bool:
        return not self._cancelled and not self._done

    def cancel(self) -> None:
        """Cancel future ticks. A tick already running is not interrupted."""
        with self._state_lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def mark_done(self) -> None:
        with self._state_lock:
            self._done = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def arm(self, delay: float, callback: Callable[[], None]) -> bool:
        """Schedule the next wake-up unless the session has ended."""
        with self._state_lock:
            if self._cancelled or self._done:
                return False
            timer = threading.Timer(delay, callback)
            timer.daemon = True
            timer.name = f"coinwatch-timer-{self.tenant_key}"
            self._timer = timer
            timer.start()
            return True


class MonitorSessionRegistry:
    """Starts, stops and drives per-tenant monitoring sessions."""

    def __init__(
        self,
        tick: TickFn,
        pool_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize registry.

        Args:
            tick: Called as tick(tenant_key, recipient) for every tick
            pool_size: Maximum number of ticks running at once
            clock: Monotonic time source used for fixed-rate scheduling
        """
        self._tick = tick
        self._clock = clock
        self._sessions: dict[str, MonitorSession] = {}
        # Outlive their sessions so a restarted tenant never overlaps a tick
        # from the session it replaced.
        self._tick_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="coinwatch-monitor"
        )
        self._in_flight: set[Future] = set()
        self._in_flight_lock = threading.Lock()

    def start(self, tenant_key: str, recipient: str, tick_interval: float) -> bool:
        """
        Start monitoring for a tenant.

        Args:
            tenant_key: Unique tenant identifier
            recipient: Address notifications go to
            tick_interval: Seconds between ticks

        Returns:
            True if started, False if already running or scheduling failed
        """
        if tick_interval <= 0:
            logger.error(f"Invalid tick interval for {tenant_key}: {tick_interval}")
            return False

        with self._lock:
            existing = self._sessions.get(tenant_key)
            if existing is not None and existing.is_active():
                logger.warning(f"Monitoring already active for tenant: {tenant_key}")
                return False

            tick_lock = self._tick_locks.setdefault(tenant_key, threading.Lock())
            session = MonitorSession(tenant_key, recipient, tick_interval, tick_lock)
            try:
                self._submit(session)
            except RuntimeError as e:
                logger.error(f"Error starting monitoring for {tenant_key}: {e}")
                return False

            self._sessions[tenant_key] = session
            first_due = self._clock() + tick_interval
            session.arm(tick_interval, lambda: self._on_due(session, first_due))

        logger.info(
            f"Monitoring started for tenant: {tenant_key} "
            f"(recipient: {recipient}, every {tick_interval}s)"
        )
        return True

    def stop(self, tenant_key: str) -> bool:
        """
        Stop monitoring for a tenant.

        Returns:
            True if a session was stopped, False if none existed
        """
        with self._lock:
            session = self._sessions.pop(tenant_key, None)

        if session is None:
            logger.warning(f"No active monitoring for tenant: {tenant_key}")
            return False

        session.cancel()
        logger.info(f"Monitoring stopped for tenant: {tenant_key}")
        return True

    def is_active(self, tenant_key: str) -> bool:
        """Check whether a tenant has a live session."""
        with self._lock:
            session = self._sessions.get(tenant_key)
        return session is not None and session.is_active()

    def status(self, tenant_key: str) -> StatusSnapshot:
        """Get a tenant's monitoring status."""
        with self._lock:
            session = self._sessions.get(tenant_key)
            total = sum(1 for s in self._sessions.values() if s.is_active())
        return StatusSnapshot(
            tenant_key=tenant_key,
            active=session is not None and session.is_active(),
            total_active_sessions=total,
            timestamp=datetime.now(),
        )

    def active_tenants(self) -> list[str]:
        with self._lock:
            return [k for k, s in self._sessions.items() if s.is_active()]

    def stop_all(self) -> None:
        """Stop every session, continuing past individual failures."""
        with self._lock:
            keys = list(self._sessions)

        logger.info(f"Stopping {len(keys)} monitoring session(s)")
        for key in keys:
            try:
                self.stop(key)
            except Exception as e:
                logger.error(f"Error stopping monitoring for {key}: {e}")

    def run_now(self, tenant_key: str, recipient: str) -> object:
        """
        Run one tick synchronously, outside the schedule.

        Waits for any in-flight tick of the tenant so the two never overlap,
        including a tick left over from a stopped session. Errors propagate
        to the caller.
        """
        with self._lock:
            session = self._sessions.get(tenant_key)
            tick_lock = self._tick_locks.setdefault(tenant_key, threading.Lock())

        if session is not None:
            recipient = session.recipient

        with tick_lock:
            return self._tick(tenant_key, recipient)

    def shutdown(self, grace_seconds: float = 60.0) -> bool:
        """
        Stop all sessions and wait a bounded time for in-flight ticks.

        Returns:
            True if every in-flight tick finished within the grace period
        """
        self.stop_all()

        with self._in_flight_lock:
            pending = set(self._in_flight)

        _, not_done = wait(pending, timeout=grace_seconds)
        if not_done:
            logger.warning(
                f"{len(not_done)} tick(s) still running after {grace_seconds}s grace period"
            )

        self._pool.shutdown(wait=False, cancel_futures=True)
        return not not_done

    def _on_due(self, session: MonitorSession, due: float) -> None:
        """Timer callback: queue a tick and arm the next one."""
        if not session.is_active():
            return

        try:
            self._submit(session)
        except RuntimeError as e:
            logger.error(f"Cannot schedule tick for {session.tenant_key}: {e}")
            session.mark_done()
            return

        # Fixed rate: next due time is relative to this one, not to now
        next_due = due + session.interval
        delay = max(0.0, next_due - self._clock())
        session.arm(delay, lambda: self._on_due(session, next_due))

    def _submit(self, session: MonitorSession) -> None:
        future = self._pool.submit(self._run_tick, session)
        with self._in_flight_lock:
            self._in_flight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(future)

    def _run_tick(self, session: MonitorSession) -> None:
        if session.cancelled:
            return
        if not session.tick_lock.acquire(blocking=False):
            logger.warning(
                f"Previous tick for {session.tenant_key} still running, skipping"
            )
            return

        try:
            logger.info(f"Running monitoring tick for: {session.tenant_key}")
            self._tick(session.tenant_key, session.recipient)
        except Exception:
            logger.exception(f"Error in monitoring tick for {session.tenant_key}")
        finally:
            session.tick_lock.release()
