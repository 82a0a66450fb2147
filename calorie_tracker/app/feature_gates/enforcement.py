"""Raise-on-denial wrapper around :meth:`FeatureGate.record_usage` for API handlers."""
from __future__ import annotations

from .exceptions import FreeLimitReached
from .gate import FeatureGate, FeatureId, resolve_feature


def require_gated_action(
    gate: FeatureGate,
    feature_id: FeatureId,
    *,
    error_code: str = "free_limit_reached",
    message: str | None = None,
) -> None:
    """Count one use of ``feature_id`` or raise :class:`FreeLimitReached`.

    Entitled users pass without being counted. An unknown ``feature_id``
    raises :class:`UnknownFeature` before any counter is touched.
    """

    feature = resolve_feature(feature_id)
    if not gate.record_usage(feature):
        raise FreeLimitReached(feature.value, gate.limit_for(feature), code=error_code, message=message)
