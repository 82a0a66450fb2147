"""Domain models for the purchase flow."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..entitlements.models import EntitlementState, Transaction, VerificationResult


class ProviderPurchaseStatus(str, Enum):
    """Raw outcome reported by the billing provider for a purchase request."""

    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    PENDING = "pending"


class ProviderPurchaseResult(BaseModel):
    """What the provider hands back after the purchase sheet closes."""

    status: ProviderPurchaseStatus
    verification: Optional[VerificationResult] = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _require_verification_on_success(self) -> "ProviderPurchaseResult":
        if self.status == ProviderPurchaseStatus.SUCCESS and self.verification is None:
            raise ValueError("successful purchase results must carry a verification result")
        return self

    @classmethod
    def success(cls, verification: VerificationResult) -> "ProviderPurchaseResult":
        return cls(status=ProviderPurchaseStatus.SUCCESS, verification=verification)

    @classmethod
    def user_cancelled(cls) -> "ProviderPurchaseResult":
        return cls(status=ProviderPurchaseStatus.USER_CANCELLED)

    @classmethod
    def pending(cls) -> "ProviderPurchaseResult":
        return cls(status=ProviderPurchaseStatus.PENDING)


class PurchaseState(str, Enum):
    """States a single purchase attempt moves through."""

    IDLE = "idle"
    INITIATING = "initiating"
    AWAITING_PROVIDER_RESULT = "awaiting_provider_result"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"
    DONE = "done"
    CANCELLED = "cancelled"
    PENDING = "pending"
    FAILED = "failed"


class PurchaseOutcome(str, Enum):
    """Caller-visible outcome of a purchase that did not raise."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PENDING = "pending"


class PurchaseResult(BaseModel):
    """Return value of :meth:`PurchaseOrchestrator.purchase`."""

    outcome: PurchaseOutcome
    offering_id: str
    final_state: PurchaseState
    transaction: Optional[Transaction] = None
    entitlement: Optional[EntitlementState] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def is_completed(self) -> bool:
        return self.outcome == PurchaseOutcome.COMPLETED
