"""API routes driving paywall presentations from a client shell."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..paywall import PaywallPresentation
from ..schemas.paywall import PresentationResponse, PresentationUpdate, RetentionPromptResponse
from ..services.entitlements import EntitlementRuntime, get_entitlement_runtime

router = APIRouter(prefix="/api/paywall", tags=["paywall"])


def _to_response(presentation: PaywallPresentation) -> PresentationResponse:
    return PresentationResponse(
        presentation_id=presentation.presentation_id,
        is_presented=presentation.is_presented,
        purchase_completed=presentation.purchase_completed,
        last_outcome=presentation.last_outcome,
    )


def _require_presentation(runtime: EntitlementRuntime, presentation_id: str) -> PaywallPresentation:
    presentation = runtime.reconciler.registry.find(presentation_id)
    if presentation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Presentation not found")
    return presentation


@router.post("/presentations", response_model=PresentationResponse, status_code=status.HTTP_201_CREATED)
async def create_presentation(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> PresentationResponse:
    handle = runtime.reconciler.present()
    return _to_response(_require_presentation(runtime, handle.presentation_id))


@router.get("/presentations/{presentation_id}", response_model=PresentationResponse)
def get_presentation(
    presentation_id: str,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> PresentationResponse:
    return _to_response(_require_presentation(runtime, presentation_id))


@router.put("/presentations/{presentation_id}", response_model=PresentationResponse)
async def update_presentation(
    presentation_id: str,
    payload: PresentationUpdate,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> PresentationResponse:
    """Set the presented flag; closing schedules dismissal handling and returns at once."""

    handle = runtime.reconciler.handle_for(presentation_id)
    if handle is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Presentation not found")
    handle.set(payload.is_presented)
    return _to_response(_require_presentation(runtime, presentation_id))


@router.delete("/presentations/{presentation_id}", status_code=status.HTTP_204_NO_CONTENT)
def release_presentation(
    presentation_id: str,
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> Response:
    if not runtime.reconciler.release(presentation_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Presentation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/retention-prompt/dismiss", response_model=RetentionPromptResponse)
def dismiss_retention_prompt(
    *,
    runtime: EntitlementRuntime = Depends(get_entitlement_runtime),
) -> RetentionPromptResponse:
    runtime.prompts.dismiss()
    return RetentionPromptResponse(is_showing=runtime.prompts.is_showing, times_shown=runtime.prompts.times_shown)


__all__ = [
    "router",
    "create_presentation",
    "dismiss_retention_prompt",
    "get_presentation",
    "release_presentation",
    "update_presentation",
]
