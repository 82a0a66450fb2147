"""Per-feature free-usage gate consulted only while the user is not entitled."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Mapping, Optional, Union

from ..entitlements.events import EntitlementChanged, EntitlementEvent
from ..entitlements.store import EntitlementStore
from .exceptions import UnknownFeature
from .usage import (
    DEFAULT_FREE_LIMITS,
    GatedFeature,
    InMemoryUsageCounterRepository,
    UsageCounter,
    UsageCounterRepository,
)

logger = logging.getLogger(__name__)

FeatureId = Union[GatedFeature, str]


def resolve_feature(feature_id: FeatureId) -> GatedFeature:
    try:
        return GatedFeature(feature_id)
    except ValueError as exc:
        raise UnknownFeature(str(feature_id)) from exc


class FeatureGate:
    """Independent usage counters checked against fixed per-feature limits."""

    def __init__(
        self,
        store: EntitlementStore,
        *,
        repository: Optional[UsageCounterRepository] = None,
        limits: Optional[Mapping[GatedFeature, int]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._repository = repository or InMemoryUsageCounterRepository()
        self._limits: Dict[GatedFeature, int] = dict(DEFAULT_FREE_LIMITS)
        if limits:
            self._limits.update({GatedFeature(key): max(0, int(value)) for key, value in limits.items()})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = Lock()
        self._unsubscribe = store.events.subscribe(self._on_entitlement_event)

    def limit_for(self, feature_id: FeatureId) -> int:
        return self._limits[resolve_feature(feature_id)]

    def counter(self, feature_id: FeatureId) -> UsageCounter:
        return self._repository.get(resolve_feature(feature_id))

    def can_perform_gated_action(self, feature_id: FeatureId) -> bool:
        feature = resolve_feature(feature_id)
        if self._store.is_entitled:
            return True
        return self._repository.get(feature).count < self._limits[feature]

    def record_usage(self, feature_id: FeatureId) -> bool:
        """Count one gated action; ``False`` when the free limit is already used up."""

        feature = resolve_feature(feature_id)
        with self._lock:
            if self._store.is_entitled:
                return True
            counter = self._repository.get(feature)
            if counter.count >= self._limits[feature]:
                return False
            self._repository.save(counter.incremented())
            return True

    def remaining(self, feature_id: FeatureId) -> Optional[int]:
        """Free uses left, or ``None`` (unlimited) while entitled."""

        feature = resolve_feature(feature_id)
        if self._store.is_entitled:
            return None
        return max(self._limits[feature] - self._repository.get(feature).count, 0)

    def reset_all(self) -> None:
        now = self._clock()
        with self._lock:
            for feature in self._limits:
                self._repository.save(self._repository.get(feature).reset(now))
        logger.info("Free usage counters reset")

    def close(self) -> None:
        self._unsubscribe()

    def _on_entitlement_event(self, event: EntitlementEvent) -> None:
        if isinstance(event, EntitlementChanged) and event.became_entitled:
            self.reset_all()


__all__ = ["FeatureGate", "FeatureId", "resolve_feature"]
