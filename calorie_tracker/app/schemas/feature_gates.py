"""API schemas for feature gate endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..feature_gates import GatedFeature


class FeatureGateStatusResponse(BaseModel):
    feature_id: GatedFeature = Field(alias="featureId")
    allowed: bool
    is_entitled: bool = Field(alias="isEntitled")
    used: int
    limit: int
    remaining: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True)
