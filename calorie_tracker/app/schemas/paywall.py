"""API schemas for paywall presentation endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PresentationResponse(BaseModel):
    presentation_id: str = Field(alias="presentationId")
    is_presented: bool = Field(alias="isPresented")
    purchase_completed: bool = Field(alias="purchaseCompleted", default=False)
    last_outcome: Optional[str] = Field(alias="lastOutcome", default=None)

    model_config = ConfigDict(populate_by_name=True)


class PresentationUpdate(BaseModel):
    is_presented: bool = Field(alias="isPresented")

    model_config = ConfigDict(populate_by_name=True)


class RetentionPromptResponse(BaseModel):
    is_showing: bool = Field(alias="isShowing")
    times_shown: int = Field(alias="timesShown")

    model_config = ConfigDict(populate_by_name=True)
