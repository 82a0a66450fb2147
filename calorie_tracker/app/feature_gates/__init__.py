"""Feature gating utilities coordinating free-usage limits with entitlement."""
from .enforcement import require_gated_action
from .exceptions import FeatureGateError, FreeLimitReached, UnknownFeature
from .gate import FeatureGate, resolve_feature
from .usage import (
    DEFAULT_FREE_LIMITS,
    GatedFeature,
    InMemoryUsageCounterRepository,
    KeyValueUsageCounterRepository,
    UsageCounter,
    UsageCounterRepository,
)

__all__ = [
    "DEFAULT_FREE_LIMITS",
    "FeatureGate",
    "FeatureGateError",
    "FreeLimitReached",
    "GatedFeature",
    "InMemoryUsageCounterRepository",
    "KeyValueUsageCounterRepository",
    "UnknownFeature",
    "UsageCounter",
    "UsageCounterRepository",
    "require_gated_action",
    "resolve_feature",
]
