"""Retention prompt shown when the paywall closes without a purchase."""
from __future__ import annotations

import logging
from threading import Lock
from typing import Optional, Protocol

from ..entitlements.events import EntitlementEventBus, RetentionPromptRequested

logger = logging.getLogger(__name__)


class RetentionPrompter(Protocol):
    @property
    def is_showing(self) -> bool:
        ...

    def show(self, presentation_id: Optional[str] = None) -> bool:
        ...

    def dismiss(self) -> None:
        ...


class RetentionPromptState:
    """Tracks whether the retention prompt is up and announces new requests."""

    def __init__(self, events: EntitlementEventBus) -> None:
        self._events = events
        self._lock = Lock()
        self._showing = False
        self.times_shown = 0

    @property
    def is_showing(self) -> bool:
        with self._lock:
            return self._showing

    def show(self, presentation_id: Optional[str] = None) -> bool:
        """Mark the prompt visible; ``False`` when it was already showing."""

        with self._lock:
            if self._showing:
                return False
            self._showing = True
            self.times_shown += 1
        logger.info("Retention prompt requested", extra={"presentation_id": presentation_id})
        self._events.publish(RetentionPromptRequested(presentation_id=presentation_id))
        return True

    def dismiss(self) -> None:
        with self._lock:
            self._showing = False


__all__ = ["RetentionPromptState", "RetentionPrompter"]
