"""Debounce guard for paywall dismissal handling."""
from __future__ import annotations

import time
from threading import Lock
from typing import Callable, Optional

DEFAULT_DEBOUNCE_SECONDS = 0.5


class DismissalGuard:
    """Admits at most one dismissal cycle per window; extra signals are dropped.

    ``try_enter`` succeeds only when no cycle is running and the previous
    admission is more than ``interval`` seconds old.
    """

    def __init__(
        self,
        interval: float = DEFAULT_DEBOUNCE_SECONDS,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._interval = max(0.0, interval)
        self._clock = clock or time.monotonic
        self._lock = Lock()
        self._in_progress = False
        self._last_entered: Optional[float] = None

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._in_progress

    def try_enter(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._in_progress:
                return False
            if self._last_entered is not None and now - self._last_entered <= self._interval:
                return False
            self._in_progress = True
            self._last_entered = now
            return True

    def exit(self) -> None:
        with self._lock:
            self._in_progress = False


__all__ = ["DEFAULT_DEBOUNCE_SECONDS", "DismissalGuard"]
