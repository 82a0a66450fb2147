"""Billing package: purchase orchestration and the transaction update listener."""

from ..entitlements.exceptions import BillingError, CatalogEmpty, NetworkError, ProviderError, VerificationFailed
from .listener import TransactionUpdateListener
from .models import (
    ProviderPurchaseResult,
    ProviderPurchaseStatus,
    PurchaseOutcome,
    PurchaseResult,
    PurchaseState,
)
from .service import BillingProvider, PurchaseOrchestrator

__all__ = [
    "BillingError",
    "BillingProvider",
    "CatalogEmpty",
    "NetworkError",
    "ProviderError",
    "ProviderPurchaseResult",
    "ProviderPurchaseStatus",
    "PurchaseOrchestrator",
    "PurchaseOutcome",
    "PurchaseResult",
    "PurchaseState",
    "TransactionUpdateListener",
    "VerificationFailed",
]
