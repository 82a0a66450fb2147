"""State-changed notification channel for entitlement observers."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .models import EntitlementState, Transaction

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntitlementChanged(BaseModel):
    """Published after every reconciliation, even when nothing changed."""

    previous: EntitlementState
    current: EntitlementState
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def became_entitled(self) -> bool:
        return not self.previous.is_entitled and self.current.is_entitled

    @property
    def lost_entitlement(self) -> bool:
        return self.previous.is_entitled and not self.current.is_entitled


class PurchaseCompleted(BaseModel):
    transaction: Transaction
    offering_id: str
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class SubscriptionUpdate(BaseModel):
    """A renewal or restoration observed on the transaction update stream."""

    transaction_id: str
    product_id: str
    is_renewal: bool
    is_restoration: bool
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class RetentionPromptRequested(BaseModel):
    presentation_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


EntitlementEvent = Union[EntitlementChanged, PurchaseCompleted, SubscriptionUpdate, RetentionPromptRequested]
EventHandler = Callable[[EntitlementEvent], None]


class EntitlementEventBus:
    """Synchronous fan-out of entitlement events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []
        self._lock = Lock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: EntitlementEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Entitlement event handler failed",
                    extra={"event": type(event).__name__},
                )


__all__ = [
    "EntitlementChanged",
    "EntitlementEvent",
    "EntitlementEventBus",
    "EventHandler",
    "PurchaseCompleted",
    "RetentionPromptRequested",
    "SubscriptionUpdate",
]
