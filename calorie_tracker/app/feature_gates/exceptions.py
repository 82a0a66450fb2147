"""Gate denials, sharing the billing error payload and HTTP conversion."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import status

from ..entitlements.exceptions import BillingError


class FeatureGateError(BillingError):
    """A gated action was refused; carries the feature and its free limit."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        feature_id: str,
        limit: Optional[int] = None,
        status_code: int = status.HTTP_402_PAYMENT_REQUIRED,
    ) -> None:
        self.feature_id = feature_id
        self.limit = limit
        detail: Dict[str, Any] = {"feature_id": feature_id}
        if limit is not None:
            detail["limit"] = limit
        super().__init__(code=code, message=message, status_code=status_code, detail=detail)


class UnknownFeature(FeatureGateError):
    def __init__(self, feature_id: str) -> None:
        super().__init__(
            "unknown_feature",
            f"Unknown gated feature '{feature_id}'.",
            feature_id=feature_id,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class FreeLimitReached(FeatureGateError):
    """The free allowance for a feature is used up; subscribing lifts it."""

    def __init__(
        self,
        feature_id: str,
        limit: int,
        *,
        code: str = "free_limit_reached",
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            code,
            message or f"Free '{feature_id}' uses are exhausted. Subscribe to continue.",
            feature_id=feature_id,
            limit=limit,
        )
