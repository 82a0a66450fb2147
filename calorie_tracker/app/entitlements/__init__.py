"""Entitlement domain models and services."""

from .catalog import DEFAULT_PRODUCT_IDS, OfferingCatalog, OfferingSource, sort_offerings
from .events import (
    EntitlementChanged,
    EntitlementEvent,
    EntitlementEventBus,
    PurchaseCompleted,
    RetentionPromptRequested,
    SubscriptionUpdate,
)
from .exceptions import BillingError, CatalogEmpty, NetworkError, ProviderError, VerificationFailed
from .mirror import (
    LOCAL_MIRROR_KEY,
    SHARED_MIRROR_KEY,
    EntitlementMirror,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    MirrorRecord,
    load_widget_entitlement,
)
from .models import (
    BillingPeriod,
    EntitlementState,
    IntroductoryOffer,
    IntroductoryOfferKind,
    Offering,
    PeriodUnit,
    ProductType,
    RenewalInfo,
    RenewalState,
    Transaction,
    TransactionReason,
    VerificationResult,
)
from .store import EntitlementSource, EntitlementStore
from .verification import (
    HMACTransactionSigner,
    ProviderTransactionVerifier,
    SignedTransactionVerifier,
    TransactionSigner,
    TransactionVerifier,
)

__all__ = [
    "DEFAULT_PRODUCT_IDS",
    "LOCAL_MIRROR_KEY",
    "SHARED_MIRROR_KEY",
    "BillingError",
    "BillingPeriod",
    "CatalogEmpty",
    "EntitlementChanged",
    "EntitlementEvent",
    "EntitlementEventBus",
    "EntitlementMirror",
    "EntitlementSource",
    "EntitlementState",
    "EntitlementStore",
    "HMACTransactionSigner",
    "InMemoryKeyValueStore",
    "IntroductoryOffer",
    "IntroductoryOfferKind",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MirrorRecord",
    "NetworkError",
    "Offering",
    "OfferingCatalog",
    "OfferingSource",
    "PeriodUnit",
    "ProductType",
    "ProviderError",
    "ProviderTransactionVerifier",
    "PurchaseCompleted",
    "RenewalInfo",
    "RenewalState",
    "RetentionPromptRequested",
    "SignedTransactionVerifier",
    "SubscriptionUpdate",
    "Transaction",
    "TransactionReason",
    "TransactionSigner",
    "TransactionVerifier",
    "VerificationFailed",
    "VerificationResult",
    "load_widget_entitlement",
    "sort_offerings",
]
