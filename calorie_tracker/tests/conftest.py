from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

import pytest

from calorie_tracker.app.billing import ProviderPurchaseResult
from calorie_tracker.app.entitlements import (
    BillingPeriod,
    EntitlementEventBus,
    EntitlementStore,
    Offering,
    PeriodUnit,
    RenewalInfo,
    Transaction,
    VerificationResult,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

WEEKLY = "calCalculator.weekly.premium"
MONTHLY = "calCalculator.monthly.premium"
YEARLY = "calCalculator.yearly.premium"


class FakeBillingProvider:
    """Scriptable billing provider used across the test-suite."""

    def __init__(self) -> None:
        self.offerings: List[Offering] = []
        self.list_errors: List[Exception] = []
        self.list_calls: List[tuple] = []
        self.entitlements: List[VerificationResult] = []
        self.entitlement_error: Optional[Exception] = None
        self.entitlement_calls = 0
        self.renewals: Dict[str, RenewalInfo] = {}
        self.purchase_results: List[Union[ProviderPurchaseResult, Exception]] = []
        self.grant_on_purchase = True
        self.acknowledged: List[str] = []
        self.acknowledge_error: Optional[Exception] = None
        self.sync_calls = 0
        self.sync_error: Optional[Exception] = None
        self._updates: Optional[asyncio.Queue] = None

    def _queue(self) -> asyncio.Queue:
        if self._updates is None:
            self._updates = asyncio.Queue()
        return self._updates

    def push_update(self, result: VerificationResult) -> None:
        self._queue().put_nowait(result)

    async def list_offerings(self, ids: Iterable[str]) -> Sequence[Offering]:
        requested = tuple(sorted(ids))
        self.list_calls.append(requested)
        if self.list_errors:
            raise self.list_errors.pop(0)
        return [offering for offering in self.offerings if offering.id in requested]

    async def purchase(self, offering: Offering) -> ProviderPurchaseResult:
        outcome = self.purchase_results.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if self.grant_on_purchase and outcome.verification is not None and outcome.verification.verified:
            self.entitlements.append(outcome.verification)
        return outcome

    async def current_entitlements(self):
        self.entitlement_calls += 1
        if self.entitlement_error is not None:
            raise self.entitlement_error
        for result in list(self.entitlements):
            yield result

    async def entitlement_updates(self):
        queue = self._queue()
        while True:
            yield await queue.get()

    async def acknowledge(self, transaction: Transaction) -> None:
        if self.acknowledge_error is not None:
            raise self.acknowledge_error
        self.acknowledged.append(transaction.transaction_id)

    async def sync(self) -> None:
        self.sync_calls += 1
        if self.sync_error is not None:
            raise self.sync_error

    async def renewal_info(self, product_id: str) -> Optional[RenewalInfo]:
        return self.renewals.get(product_id)


async def _wait_until(predicate: Callable[[], bool], *, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def wait_until() -> Callable[..., object]:
    return _wait_until


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def provider() -> FakeBillingProvider:
    return FakeBillingProvider()


@pytest.fixture
def events() -> EntitlementEventBus:
    return EntitlementEventBus()


@pytest.fixture
def store(provider: FakeBillingProvider, events: EntitlementEventBus, clock) -> EntitlementStore:
    return EntitlementStore(provider, events=events, clock=clock)


@pytest.fixture
def make_offering() -> Callable[..., Offering]:
    def factory(product_id: str, unit: PeriodUnit, price: str = "9.99", **overrides) -> Offering:
        data = {
            "id": product_id,
            "display_name": product_id.split(".")[1].capitalize(),
            "price": Decimal(price),
            "display_price": f"${price}",
            "billing_period": BillingPeriod(unit=unit),
        }
        data.update(overrides)
        return Offering(**data)

    return factory


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    counter = {"value": 0}

    def factory(product_id: str = MONTHLY, **overrides) -> Transaction:
        counter["value"] += 1
        data = {
            "transaction_id": f"txn-{counter['value']}",
            "product_id": product_id,
            "purchase_date": NOW - timedelta(days=1),
            "original_purchase_date": NOW - timedelta(days=1),
            "expiration_date": NOW + timedelta(days=29),
        }
        data.update(overrides)
        return Transaction(**data)

    return factory
