"""Error taxonomy shared by the catalog, store and purchase flows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Base class for failures surfaced to callers of the billing flows."""

    code: str
    message: str
    status_code: int = status.HTTP_502_BAD_GATEWAY
    detail: Optional[Mapping[str, Any]] = None
    retryable: bool = False

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class VerificationFailed(BillingError):
    """A transaction failed verification and must never grant entitlement."""

    def __init__(
        self,
        message: str = "The purchase could not be completed.",
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="verification_failed",
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=detail,
        )


class ProviderError(BillingError):
    """The billing provider rejected or failed a request; safe to retry."""

    def __init__(
        self,
        message: str = "The store could not complete the request. Please try again.",
        *,
        detail: Optional[Mapping[str, Any]] = None,
        code: str = "provider_error",
        status_code: int = status.HTTP_502_BAD_GATEWAY,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=status_code,
            detail=detail,
            retryable=True,
        )


class NetworkError(ProviderError):
    """The provider could not be reached."""

    def __init__(
        self,
        message: str = "Network error. Please check your internet connection.",
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            detail=detail,
            code="network_error",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class CatalogEmpty(BillingError):
    """The provider answered but offered no plans at all."""

    def __init__(
        self,
        message: str = "Subscription plans are currently unavailable. Please try again later.",
        *,
        detail: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="catalog_empty",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )
