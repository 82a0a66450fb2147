"""API schemas for billing endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import PurchaseOutcome, PurchaseResult, PurchaseState
from ..entitlements.models import Offering, PeriodUnit, ProductType


class IntroductoryOfferResponse(BaseModel):
    kind: str
    period_unit: PeriodUnit = Field(alias="periodUnit")
    period_value: int = Field(alias="periodValue")
    period_count: int = Field(alias="periodCount")
    price: Decimal

    model_config = ConfigDict(populate_by_name=True)


class OfferingResponse(BaseModel):
    id: str
    display_name: str = Field(alias="displayName")
    price: Decimal
    display_price: str = Field(alias="displayPrice")
    currency: str
    period_unit: PeriodUnit = Field(alias="periodUnit")
    period_value: int = Field(alias="periodValue")
    period_label: str = Field(alias="periodLabel")
    product_type: ProductType = Field(alias="productType")
    introductory_offer: Optional[IntroductoryOfferResponse] = Field(alias="introductoryOffer", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_offering(cls, offering: Offering) -> "OfferingResponse":
        intro = offering.introductory_offer
        return cls(
            id=offering.id,
            display_name=offering.display_name,
            price=offering.price,
            display_price=offering.display_price,
            currency=offering.currency,
            period_unit=offering.billing_period.unit,
            period_value=offering.billing_period.value,
            period_label=offering.billing_period.describe(),
            product_type=offering.product_type,
            introductory_offer=IntroductoryOfferResponse(
                kind=intro.kind.value,
                period_unit=intro.period.unit,
                period_value=intro.period.value,
                period_count=intro.period_count,
                price=intro.price,
            )
            if intro
            else None,
        )


class OfferingListResponse(BaseModel):
    offerings: List[OfferingResponse]
    recommended_id: Optional[str] = Field(alias="recommendedId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PurchaseRequest(BaseModel):
    offering_id: str = Field(alias="offeringId", min_length=1)
    presentation_id: Optional[str] = Field(alias="presentationId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PurchaseResponse(BaseModel):
    outcome: PurchaseOutcome
    offering_id: str = Field(alias="offeringId")
    final_state: PurchaseState = Field(alias="finalState")
    transaction_id: Optional[str] = Field(alias="transactionId", default=None)
    is_entitled: bool = Field(alias="isEntitled")
    completed_at: datetime = Field(alias="completedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: PurchaseResult, *, is_entitled: bool) -> "PurchaseResponse":
        return cls(
            outcome=result.outcome,
            offering_id=result.offering_id,
            final_state=result.final_state,
            transaction_id=result.transaction.transaction_id if result.transaction else None,
            is_entitled=is_entitled,
            completed_at=result.completed_at,
        )
