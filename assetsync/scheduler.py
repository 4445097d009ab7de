"""Debounced background persistence and the master refresh cadence.

The :class:`SyncScheduler` owns the decision of *when* local edits are
written back.  Edits arm a :class:`DebounceTimer`; a burst of edits produces a
single save of the latest state.  While a save is in flight the ``SAVING``
state suppresses a second one, and an edit that lands during the save leaves
the session dirty so another cycle is armed when the save returns.

Timers run on a :class:`Clock`.  Production code uses :class:`ThreadingClock`
(``threading.Timer``); tests pass a manual clock and advance it explicitly.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from assetsync.errors import (
    AssetSyncError,
    AuthExpiredError,
    NetworkUnavailableError,
    translate_error,
)

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 3.0
DEFAULT_MASTER_SYNC_HOUR = 6

StatusPayload = Dict[str, object]


class SyncState(Enum):
    IDLE = "idle"
    SAVING = "saving"
    OFFLINE = "offline"
    AUTH_RETRY = "auth_retry"


StatusCallback = Callable[[SyncState, StatusPayload], None]


class Clock:
    """Time source able to run a callback after a delay."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]):
        """Schedule ``callback``; the returned handle exposes ``cancel()``."""

        raise NotImplementedError


class ThreadingClock(Clock):
    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer


class DebounceTimer:
    """Cancellable fire-once timer; re-arming replaces the pending firing."""

    def __init__(self, delay: float, callback: Callable[[], None], clock: Optional[Clock] = None) -> None:
        self._delay = max(0.0, float(delay))
        self._callback = callback
        self._clock = clock or ThreadingClock()
        self._lock = threading.Lock()
        self._handle = None
        self._generation = 0

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None

    def arm(self) -> None:
        with self._lock:
            self._cancel_locked()
            self._generation += 1
            generation = self._generation
            self._handle = self._clock.call_later(self._delay, lambda: self._fire(generation))

    def cancel(self) -> None:
        with self._lock:
            self._cancel_locked()
            self._generation += 1

    def _cancel_locked(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._handle is None:
                return
            self._handle = None
        self._callback()


class SyncScheduler:
    """State machine guarding background saves of the session."""

    def __init__(
        self,
        save: Callable[[], None],
        *,
        refresh_credentials: Callable[[], None],
        purge_credentials: Callable[[], None],
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Optional[Clock] = None,
        status_callback: Optional[StatusCallback] = None,
        dirty: bool = False,
    ) -> None:
        self._save = save
        self._refresh_credentials = refresh_credentials
        self._purge_credentials = purge_credentials
        self._status_callback = status_callback
        self._lock = threading.RLock()
        self._state = SyncState.IDLE
        self._dirty = dirty
        self._mutations = 0
        self._authenticated = True
        self._last_error: Optional[AssetSyncError] = None
        self._timer = DebounceTimer(delay, self._on_timer, clock)

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def online(self) -> bool:
        return self._state is not SyncState.OFFLINE

    @property
    def last_error(self) -> Optional[AssetSyncError]:
        return self._last_error

    @property
    def timer(self) -> DebounceTimer:
        return self._timer

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------
    def notify_mutation(self) -> None:
        """Record a local edit and (re)start the debounce window."""

        with self._lock:
            self._dirty = True
            self._mutations += 1
            authenticated = self._authenticated
        if authenticated:
            self._timer.arm()
        else:
            logger.debug("Edit recorded while signed out; automatic save suppressed")

    def mark_dirty(self) -> None:
        with self._lock:
            self._dirty = True
            self._mutations += 1

    def cancel(self) -> None:
        self._timer.cancel()

    def reset(self) -> None:
        """Drop pending work, used on sign-out."""

        self._timer.cancel()
        with self._lock:
            self._dirty = False
            self._state = SyncState.IDLE
            self._last_error = None

    def reset_authentication(self) -> None:
        with self._lock:
            self._authenticated = True
            if self._state is SyncState.AUTH_RETRY:
                self._state = SyncState.IDLE

    def flush(self) -> bool:
        """Run one save attempt now.  Returns ``True`` when the save succeeded."""

        with self._lock:
            if self._state is SyncState.SAVING:
                logger.debug("Save already in flight; edit will be picked up afterwards")
                return False
            if not self._authenticated:
                logger.debug("Not authenticated; skipping save")
                return False
            if not self._dirty:
                return True
            self._set_state(SyncState.SAVING)
            mutations_at_start = self._mutations

        try:
            self._save()
        except Exception as exc:  # mapped onto the taxonomy below
            error = translate_error(exc)
            self._handle_failure(error)
            return False

        with self._lock:
            if self._mutations == mutations_at_start:
                self._dirty = False
            self._last_error = None
            self._set_state(SyncState.IDLE, saved=True)
            still_dirty = self._dirty
        if still_dirty:
            logger.info("Edits arrived during save; scheduling another cycle")
            self._timer.arm()
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _on_timer(self) -> None:
        self.flush()

    def _handle_failure(self, error: AssetSyncError) -> None:
        with self._lock:
            self._last_error = error
        if isinstance(error, NetworkUnavailableError):
            logger.warning("Background save failed, going offline: %s", error)
            with self._lock:
                self._set_state(SyncState.OFFLINE, error=str(error))
            return
        if isinstance(error, AuthExpiredError):
            logger.warning("Background save rejected credential: %s", error)
            with self._lock:
                self._set_state(SyncState.AUTH_RETRY, error=str(error))
            self._recover_auth()
            return
        logger.error("Background save failed: %s", error)
        with self._lock:
            self._set_state(SyncState.IDLE, error=str(error))

    def _recover_auth(self) -> None:
        try:
            self._refresh_credentials()
        except Exception as exc:  # any refresh failure ends the session
            logger.error("Silent credential refresh failed: %s", exc)
            with self._lock:
                self._authenticated = False
            self._timer.cancel()
            try:
                self._purge_credentials()
            finally:
                with self._lock:
                    self._set_state(SyncState.IDLE, error="authentication required")
            return

        logger.info("Credential refreshed silently; retrying pending edits")
        with self._lock:
            self._set_state(SyncState.IDLE)
            still_dirty = self._dirty
        if still_dirty:
            self._timer.arm()

    def _set_state(self, state: SyncState, **payload: object) -> None:
        previous = self._state
        self._state = state
        if previous is not state:
            logger.debug("Sync state %s -> %s", previous.value, state.value)
        payload.setdefault("dirty", self._dirty)
        if self._status_callback:
            try:
                self._status_callback(state, dict(payload))
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Sync status callback failed", exc_info=True)


def master_sync_threshold(now: datetime, hour: int = DEFAULT_MASTER_SYNC_HOUR) -> datetime:
    """Return the most recent occurrence of ``hour:00`` at or before ``now``."""

    threshold = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now < threshold:
        threshold -= timedelta(days=1)
    return threshold


def master_sync_due(
    now: datetime,
    last_sync: Optional[datetime],
    *,
    has_users: bool,
    hour: int = DEFAULT_MASTER_SYNC_HOUR,
) -> bool:
    """Return ``True`` when the daily master refresh should run."""

    if not has_users or last_sync is None:
        return True
    threshold = master_sync_threshold(now, hour)
    if last_sync.tzinfo is not None and threshold.tzinfo is None:
        last_sync = last_sync.astimezone().replace(tzinfo=None)
    elif last_sync.tzinfo is None and threshold.tzinfo is not None:
        last_sync = last_sync.replace(tzinfo=threshold.tzinfo)
    return last_sync < threshold


__all__ = [
    "Clock",
    "DEFAULT_DEBOUNCE_SECONDS",
    "DEFAULT_MASTER_SYNC_HOUR",
    "DebounceTimer",
    "SyncScheduler",
    "SyncState",
    "ThreadingClock",
    "master_sync_due",
    "master_sync_threshold",
]
