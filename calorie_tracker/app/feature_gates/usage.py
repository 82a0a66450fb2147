"""Usage counters for features that are free a limited number of times."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..entitlements.mirror import KeyValueStore


class GatedFeature(str, Enum):
    """Features that non-subscribers may use a fixed number of times."""

    ANALYSIS = "analysis"
    MEAL_SAVE = "meal_save"
    EXERCISE_SAVE = "exercise_save"


DEFAULT_FREE_LIMITS: Mapping[GatedFeature, int] = {
    GatedFeature.ANALYSIS: 1,
    GatedFeature.MEAL_SAVE: 1,
    GatedFeature.EXERCISE_SAVE: 1,
}


class UsageCounter(BaseModel):
    """Count of gated actions performed while not entitled."""

    feature_id: GatedFeature
    count: int = Field(default=0, ge=0)
    last_reset_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def incremented(self) -> "UsageCounter":
        return self.model_copy(update={"count": self.count + 1})

    def reset(self, now: Optional[datetime] = None) -> "UsageCounter":
        return self.model_copy(update={"count": 0, "last_reset_at": now or datetime.now(timezone.utc)})


class UsageCounterRepository(Protocol):
    def get(self, feature_id: GatedFeature) -> UsageCounter:
        ...

    def save(self, counter: UsageCounter) -> UsageCounter:
        ...


class InMemoryUsageCounterRepository:
    def __init__(self) -> None:
        self._counters: Dict[GatedFeature, UsageCounter] = {}
        self._lock = Lock()

    def get(self, feature_id: GatedFeature) -> UsageCounter:
        with self._lock:
            return self._counters.get(feature_id) or UsageCounter(feature_id=feature_id)

    def save(self, counter: UsageCounter) -> UsageCounter:
        with self._lock:
            self._counters[counter.feature_id] = counter
        return counter


class KeyValueUsageCounterRepository:
    """Persists counters in a key-value store under ``free_<feature>_count``."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @staticmethod
    def key_for(feature_id: GatedFeature) -> str:
        return f"free_{feature_id.value}_count"

    def get(self, feature_id: GatedFeature) -> UsageCounter:
        raw = self._store.get(self.key_for(feature_id))
        if raw is None:
            return UsageCounter(feature_id=feature_id)
        if isinstance(raw, int):
            return UsageCounter(feature_id=feature_id, count=max(raw, 0))
        try:
            return UsageCounter.model_validate({**raw, "feature_id": feature_id})
        except (TypeError, ValidationError):
            return UsageCounter(feature_id=feature_id)

    def save(self, counter: UsageCounter) -> UsageCounter:
        self._store.set(self.key_for(counter.feature_id), counter.model_dump(mode="json"))
        return counter


__all__ = [
    "DEFAULT_FREE_LIMITS",
    "GatedFeature",
    "InMemoryUsageCounterRepository",
    "KeyValueUsageCounterRepository",
    "UsageCounter",
    "UsageCounterRepository",
]
