"""API routes exposing offerings and purchases."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..entitlements import BillingError, Offering
from ..schemas.billing import OfferingListResponse, OfferingResponse, PurchaseRequest, PurchaseResponse
from ..services.entitlements import EntitlementRuntime, get_entitlement_runtime

router = APIRouter(prefix="/api/billing", tags=["billing"])


async def _ensure_offerings(runtime: EntitlementRuntime) -> None:
    if runtime.catalog.offerings:
        return
    try:
        await runtime.catalog.load_offerings()
    except BillingError as exc:
        raise exc.to_http_exception() from exc


@router.get("/offerings", response_model=OfferingListResponse)
async def list_offerings(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> OfferingListResponse:
    """Return offerings ordered yearly, monthly, weekly."""

    await _ensure_offerings(runtime)
    recommended = runtime.catalog.recommended
    return OfferingListResponse(
        offerings=[OfferingResponse.from_offering(offering) for offering in runtime.catalog.offerings],
        recommended_id=recommended.id if recommended else None,
    )


@router.post("/purchase", response_model=PurchaseResponse)
async def purchase_offering(
    payload: PurchaseRequest,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> PurchaseResponse:
    await _ensure_offerings(runtime)
    offering: Offering | None = runtime.catalog.find(payload.offering_id)
    if offering is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offering not found")
    if runtime.orchestrator.is_in_flight(offering.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Purchase already in progress")

    try:
        result = await runtime.orchestrator.purchase(offering)
    except BillingError as exc:
        raise exc.to_http_exception() from exc

    if result.is_completed and payload.presentation_id:
        runtime.reconciler.mark_purchase_completed(payload.presentation_id)
    return PurchaseResponse.from_result(result, is_entitled=runtime.store.is_entitled)


__all__ = ["router", "list_offerings", "purchase_offering"]
