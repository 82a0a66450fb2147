"""Domain models for offerings, transactions and entitlement state."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodUnit(str, Enum):
    """Calendar unit of a billing period."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class ProductType(str, Enum):
    """Kinds of products the billing provider can sell."""

    AUTO_RENEWABLE = "auto_renewable"
    NON_RENEWING = "non_renewing"
    NON_CONSUMABLE = "non_consumable"
    CONSUMABLE = "consumable"


class IntroductoryOfferKind(str, Enum):
    """Payment mode of an introductory offer."""

    FREE_TRIAL = "free_trial"
    PAY_AS_YOU_GO = "pay_as_you_go"
    PAY_UP_FRONT = "pay_up_front"


class TransactionReason(str, Enum):
    """Why the provider issued a transaction."""

    PURCHASE = "purchase"
    RENEWAL = "renewal"


class RenewalState(str, Enum):
    """Renewal status reported by the provider for a subscription."""

    SUBSCRIBED = "subscribed"
    EXPIRED = "expired"
    IN_BILLING_RETRY_PERIOD = "in_billing_retry_period"
    IN_GRACE_PERIOD = "in_grace_period"
    REVOKED = "revoked"


class BillingPeriod(BaseModel):
    """A billing period such as ``1 x month`` or ``3 x day``."""

    unit: PeriodUnit
    value: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True)

    def describe(self) -> str:
        if self.value == 1:
            return self.unit.value
        return f"{self.value} {self.unit.value}s"


class IntroductoryOffer(BaseModel):
    """Trial or discounted terms applied before the regular price."""

    kind: IntroductoryOfferKind
    period: BillingPeriod
    price: Decimal = Decimal("0")
    period_count: int = Field(default=1, ge=1)

    model_config = ConfigDict(frozen=True)

    @property
    def is_free_trial(self) -> bool:
        return self.kind == IntroductoryOfferKind.FREE_TRIAL


class Offering(BaseModel):
    """Immutable description of a purchasable plan."""

    id: str
    display_name: str
    price: Decimal = Field(ge=0)
    display_price: str = ""
    currency: str = Field(default="USD", min_length=3, max_length=3)
    billing_period: BillingPeriod
    introductory_offer: Optional[IntroductoryOffer] = None
    product_type: ProductType = ProductType.AUTO_RENEWABLE

    model_config = ConfigDict(frozen=True)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def is_subscription(self) -> bool:
        return self.product_type == ProductType.AUTO_RENEWABLE


class Transaction(BaseModel):
    """Provider-issued record that a purchase occurred."""

    transaction_id: str
    product_id: str
    product_type: ProductType = ProductType.AUTO_RENEWABLE
    purchase_date: datetime
    original_purchase_date: Optional[datetime] = None
    expiration_date: Optional[datetime] = None
    revocation_date: Optional[datetime] = None
    reason: TransactionReason = TransactionReason.PURCHASE

    model_config = ConfigDict(frozen=True)

    @property
    def is_revoked(self) -> bool:
        return self.revocation_date is not None

    @property
    def is_subscription(self) -> bool:
        return self.product_type == ProductType.AUTO_RENEWABLE

    @property
    def is_restoration(self) -> bool:
        return (
            self.reason == TransactionReason.PURCHASE
            and self.original_purchase_date is not None
            and self.original_purchase_date != self.purchase_date
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_date is None:
            return False
        return (now or _utcnow()) >= self.expiration_date

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.is_revoked and not self.is_expired(now)

    def to_claims(self) -> dict[str, object]:
        """Canonical representation used for signature checks."""

        claims: dict[str, object] = {
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_type": self.product_type.value,
            "purchase_date": self.purchase_date.isoformat(),
            "reason": self.reason.value,
        }
        if self.original_purchase_date:
            claims["original_purchase_date"] = self.original_purchase_date.isoformat()
        if self.expiration_date:
            claims["expiration_date"] = self.expiration_date.isoformat()
        if self.revocation_date:
            claims["revocation_date"] = self.revocation_date.isoformat()
        return claims


class VerificationResult(BaseModel):
    """Envelope the provider wraps around every transaction it reports."""

    transaction: Transaction
    verified: bool
    error: Optional[str] = None
    signature: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def trusted(cls, transaction: Transaction, *, signature: Optional[str] = None) -> "VerificationResult":
        return cls(transaction=transaction, verified=True, signature=signature)

    @classmethod
    def untrusted(cls, transaction: Transaction, error: str) -> "VerificationResult":
        return cls(transaction=transaction, verified=False, error=error)


class RenewalInfo(BaseModel):
    """Renewal intent for an auto-renewable subscription."""

    product_id: str
    will_auto_renew: bool = False
    state: RenewalState = RenewalState.SUBSCRIBED
    signed_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class EntitlementState(BaseModel):
    """Process-wide answer to "is the user currently entitled"."""

    is_entitled: bool = False
    active_offering: Optional[Offering] = None
    active_product_id: Optional[str] = None
    expiration_date: Optional[datetime] = None
    will_renew: bool = False
    has_completed_initial_check: bool = False
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def not_entitled(cls, *, has_completed_initial_check: bool = True) -> "EntitlementState":
        return cls(is_entitled=False, has_completed_initial_check=has_completed_initial_check)

    def same_entitlement(self, other: "EntitlementState") -> bool:
        """Compare everything except the timestamp."""

        return self.model_dump(exclude={"updated_at"}) == other.model_dump(exclude={"updated_at"})
