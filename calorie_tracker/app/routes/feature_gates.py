"""API routes for free-usage feature gates."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..feature_gates import FeatureGate, FeatureGateError, require_gated_action, resolve_feature
from ..schemas.feature_gates import FeatureGateStatusResponse
from ..services.entitlements import EntitlementRuntime, get_entitlement_runtime

router = APIRouter(prefix="/api/feature-gates", tags=["feature-gates"])


def _status(gate: FeatureGate, feature_id: str, *, is_entitled: bool) -> FeatureGateStatusResponse:
    feature = resolve_feature(feature_id)
    return FeatureGateStatusResponse(
        feature_id=feature,
        allowed=gate.can_perform_gated_action(feature),
        is_entitled=is_entitled,
        used=gate.counter(feature).count,
        limit=gate.limit_for(feature),
        remaining=gate.remaining(feature),
    )


@router.get("/{feature_id}", response_model=FeatureGateStatusResponse)
def get_feature_gate(
    feature_id: str,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> FeatureGateStatusResponse:
    try:
        return _status(runtime.feature_gate, feature_id, is_entitled=runtime.store.is_entitled)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


@router.post("/{feature_id}/usage", response_model=FeatureGateStatusResponse)
def record_feature_usage(
    feature_id: str,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> FeatureGateStatusResponse:
    """Count one gated action; 402 once the free allowance is used up."""

    try:
        require_gated_action(runtime.feature_gate, feature_id)
        return _status(runtime.feature_gate, feature_id, is_entitled=runtime.store.is_entitled)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc


__all__ = ["router", "get_feature_gate", "record_feature_usage"]
