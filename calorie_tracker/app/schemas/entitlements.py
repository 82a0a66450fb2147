"""API schemas for entitlement endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import EntitlementState
from .billing import OfferingResponse


class EntitlementStateResponse(BaseModel):
    is_entitled: bool = Field(alias="isEntitled")
    active_offering: Optional[OfferingResponse] = Field(alias="activeOffering", default=None)
    active_product_id: Optional[str] = Field(alias="activeProductId", default=None)
    expiration_date: Optional[datetime] = Field(alias="expirationDate", default=None)
    will_renew: bool = Field(alias="willRenew", default=False)
    has_completed_initial_check: bool = Field(alias="hasCompletedInitialCheck", default=False)
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_state(cls, state: EntitlementState) -> "EntitlementStateResponse":
        return cls(
            is_entitled=state.is_entitled,
            active_offering=OfferingResponse.from_offering(state.active_offering) if state.active_offering else None,
            active_product_id=state.active_product_id,
            expiration_date=state.expiration_date,
            will_renew=state.will_renew,
            has_completed_initial_check=state.has_completed_initial_check,
            updated_at=state.updated_at,
        )


class SubscriptionStatusResponse(BaseModel):
    product_id: str = Field(alias="productId")
    status: str

    model_config = ConfigDict(populate_by_name=True)
