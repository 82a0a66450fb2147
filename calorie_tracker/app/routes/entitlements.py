"""API routes exposing the entitlement state."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..schemas.entitlements import EntitlementStateResponse, SubscriptionStatusResponse
from ..services.entitlements import EntitlementRuntime, get_entitlement_runtime

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


@router.get("", response_model=EntitlementStateResponse)
def get_entitlement_state(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> EntitlementStateResponse:
    """Return the current entitlement state without querying the provider."""

    return EntitlementStateResponse.from_state(runtime.store.state)


@router.post("/reconcile", response_model=EntitlementStateResponse)
async def reconcile_entitlements(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> EntitlementStateResponse:
    state = await runtime.store.reconcile()
    return EntitlementStateResponse.from_state(state)


@router.post("/restore", response_model=EntitlementStateResponse)
async def restore_purchases(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> EntitlementStateResponse:
    state = await runtime.orchestrator.restore_purchases()
    return EntitlementStateResponse.from_state(state)


@router.get("/subscription-status/{product_id}", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    product_id: str,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> SubscriptionStatusResponse:
    status_value = await runtime.store.subscription_status(product_id)
    return SubscriptionStatusResponse(product_id=product_id, status=status_value)


__all__ = [
    "router",
    "get_entitlement_state",
    "get_subscription_status",
    "reconcile_entitlements",
    "restore_purchases",
]
