"""Application wiring for the entitlement runtime."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from functools import lru_cache
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from ..billing import (
    BillingProvider,
    ProviderPurchaseResult,
    PurchaseOrchestrator,
    TransactionUpdateListener,
)
from ..entitlements import (
    LOCAL_MIRROR_KEY,
    SHARED_MIRROR_KEY,
    BillingError,
    BillingPeriod,
    EntitlementEventBus,
    EntitlementMirror,
    EntitlementStore,
    HMACTransactionSigner,
    JsonFileKeyValueStore,
    KeyValueStore,
    Offering,
    OfferingCatalog,
    PeriodUnit,
    ProviderTransactionVerifier,
    RenewalInfo,
    RenewalState,
    SignedTransactionVerifier,
    Transaction,
    TransactionReason,
    TransactionVerifier,
    VerificationResult,
)
from ..entitlements.repository import PostgresKeyValueStore
from ..feature_gates import FeatureGate, KeyValueUsageCounterRepository
from ..paywall import DismissalGuard, DismissalReconciler, RetentionPromptState
from ...config import EntitlementConfig, load_entitlement_config


logger = logging.getLogger("billing")

_PERIOD_DAYS: Dict[PeriodUnit, int] = {
    PeriodUnit.DAY: 1,
    PeriodUnit.WEEK: 7,
    PeriodUnit.MONTH: 30,
    PeriodUnit.YEAR: 365,
}

_SANDBOX_PRICES: Dict[PeriodUnit, Decimal] = {
    PeriodUnit.WEEK: Decimal("4.99"),
    PeriodUnit.MONTH: Decimal("9.99"),
    PeriodUnit.YEAR: Decimal("59.99"),
}


def _period_from_product_id(product_id: str) -> PeriodUnit:
    lowered = product_id.lower()
    if "year" in lowered or "annual" in lowered:
        return PeriodUnit.YEAR
    if "week" in lowered:
        return PeriodUnit.WEEK
    if "day" in lowered:
        return PeriodUnit.DAY
    return PeriodUnit.MONTH


def sandbox_offerings(product_ids: Iterable[str]) -> List[Offering]:
    """Offerings served by :class:`LocalSandboxBillingProvider`."""

    offerings: List[Offering] = []
    for product_id in product_ids:
        unit = _period_from_product_id(product_id)
        price = _SANDBOX_PRICES.get(unit, Decimal("9.99"))
        offerings.append(
            Offering(
                id=product_id,
                display_name=f"{unit.value.capitalize()} Premium",
                price=price,
                display_price=f"${price}",
                currency="USD",
                billing_period=BillingPeriod(unit=unit),
            )
        )
    return offerings


class LocalSandboxBillingProvider(BillingProvider):
    """In-memory provider for local development and tests.

    Transactions are signed with an HMAC secret so the signed verifier can be
    exercised end to end without a real store.
    """

    def __init__(
        self,
        offerings: Sequence[Offering],
        signer: HMACTransactionSigner,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._offerings = {offering.id: offering for offering in offerings}
        self._signer = signer
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._transactions: Dict[str, Transaction] = {}
        self._auto_renew: Dict[str, bool] = {}
        self._updates: Optional[asyncio.Queue] = None
        self.acknowledged: List[str] = []

    def _queue(self) -> asyncio.Queue:
        if self._updates is None:
            self._updates = asyncio.Queue()
        return self._updates

    def _sign(self, transaction: Transaction) -> VerificationResult:
        return VerificationResult.trusted(transaction, signature=self._signer.sign(transaction.to_claims()))

    def _latest_for(self, product_id: str) -> Optional[Transaction]:
        candidates = [txn for txn in self._transactions.values() if txn.product_id == product_id]
        if not candidates:
            return None
        # ties go to the most recently recorded transaction
        return max(enumerate(candidates), key=lambda pair: (pair[1].purchase_date, pair[0]))[1]

    async def list_offerings(self, ids: Iterable[str]) -> Sequence[Offering]:
        wanted = set(ids)
        return [offering for offering in self._offerings.values() if offering.id in wanted]

    async def purchase(self, offering: Offering) -> ProviderPurchaseResult:
        now = self._clock()
        period = offering.billing_period
        transaction = Transaction(
            transaction_id=f"txn_{uuid4().hex}",
            product_id=offering.id,
            product_type=offering.product_type,
            purchase_date=now,
            original_purchase_date=now,
            expiration_date=now + timedelta(days=_PERIOD_DAYS[period.unit] * period.value),
        )
        self._transactions[transaction.transaction_id] = transaction
        self._auto_renew[offering.id] = True
        logger.info("Sandbox purchase of %s issued %s", offering.id, transaction.transaction_id)
        return ProviderPurchaseResult.success(self._sign(transaction))

    async def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        now = self._clock()
        for product_id in sorted({txn.product_id for txn in self._transactions.values()}):
            latest = self._latest_for(product_id)
            if latest is not None and latest.is_active(now):
                yield self._sign(latest)

    async def entitlement_updates(self) -> AsyncIterator[VerificationResult]:
        queue = self._queue()
        while True:
            transaction = await queue.get()
            yield self._sign(transaction)

    async def acknowledge(self, transaction: Transaction) -> None:
        self.acknowledged.append(transaction.transaction_id)

    async def sync(self) -> None:
        logger.debug("Sandbox restore requested; %s transactions on file", len(self._transactions))

    async def renewal_info(self, product_id: str) -> Optional[RenewalInfo]:
        latest = self._latest_for(product_id)
        if latest is None:
            return None
        if latest.is_revoked:
            state = RenewalState.REVOKED
        elif latest.is_expired(self._clock()):
            state = RenewalState.EXPIRED
        else:
            state = RenewalState.SUBSCRIBED
        return RenewalInfo(
            product_id=product_id,
            will_auto_renew=self._auto_renew.get(product_id, False) and state == RenewalState.SUBSCRIBED,
            state=state,
        )

    def renew(self, product_id: str) -> Transaction:
        """Issue a renewal for ``product_id`` and push it to the update stream."""

        previous = self._latest_for(product_id)
        if previous is None:
            raise KeyError(product_id)
        offering = self._offerings[product_id]
        now = self._clock()
        period = offering.billing_period
        transaction = Transaction(
            transaction_id=f"txn_{uuid4().hex}",
            product_id=product_id,
            product_type=previous.product_type,
            purchase_date=now,
            original_purchase_date=previous.original_purchase_date or previous.purchase_date,
            expiration_date=now + timedelta(days=_PERIOD_DAYS[period.unit] * period.value),
            reason=TransactionReason.RENEWAL,
        )
        self._transactions[transaction.transaction_id] = transaction
        self._queue().put_nowait(transaction)
        return transaction

    def revoke(self, transaction_id: str) -> Transaction:
        """Mark a transaction refunded and push it to the update stream."""

        revoked = self._transactions[transaction_id].model_copy(update={"revocation_date": self._clock()})
        self._transactions[transaction_id] = revoked
        self._auto_renew[revoked.product_id] = False
        self._queue().put_nowait(revoked)
        return revoked

    def cancel_auto_renew(self, product_id: str) -> None:
        self._auto_renew[product_id] = False


@dataclass
class EntitlementRuntime:
    """Everything the entitlement core needs for the life of the process."""

    config: EntitlementConfig
    provider: BillingProvider
    events: EntitlementEventBus
    catalog: OfferingCatalog
    store: EntitlementStore
    orchestrator: PurchaseOrchestrator
    listener: TransactionUpdateListener
    feature_gate: FeatureGate
    prompts: RetentionPromptState
    reconciler: DismissalReconciler
    _started: bool = field(default=False, init=False, repr=False)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the listener, load offerings and run the first reconciliation."""

        if self._started:
            return
        self._started = True
        if self.config.listener_enabled:
            self.listener.start()
        try:
            await self.catalog.load_offerings_with_retry()
        except BillingError as exc:
            logger.warning("Offerings unavailable at startup: %s", exc.code, extra={"detail": dict(exc.payload)})
        state = await self.store.reconcile()
        logger.info(
            "Entitlement runtime started entitled=%s offerings=%s",
            state.is_entitled,
            len(self.catalog.offerings),
        )

    async def shutdown(self) -> None:
        await self.listener.stop()
        await self.reconciler.drain()
        logger.info("Entitlement runtime stopped")


def _shared_store(config: EntitlementConfig) -> KeyValueStore:
    if config.shared_backend == "postgres":
        return PostgresKeyValueStore(namespace="shared")
    return JsonFileKeyValueStore(config.shared_store_path)


def build_runtime(
    config: EntitlementConfig,
    provider: Optional[BillingProvider] = None,
    *,
    verifier: Optional[TransactionVerifier] = None,
    local_store: Optional[KeyValueStore] = None,
    shared_store: Optional[KeyValueStore] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> EntitlementRuntime:
    """Assemble an :class:`EntitlementRuntime`.

    Without an explicit provider the local sandbox provider is used together
    with a verifier that checks its HMAC signatures.
    """

    if provider is None:
        signer = HMACTransactionSigner(config.sandbox_secret)
        provider = LocalSandboxBillingProvider(sandbox_offerings(config.product_ids), signer)
        verifier = verifier or SignedTransactionVerifier(signer)
    verifier = verifier or ProviderTransactionVerifier()

    local_store = local_store if local_store is not None else JsonFileKeyValueStore(config.local_store_path)
    shared_store = shared_store if shared_store is not None else _shared_store(config)

    events = EntitlementEventBus()
    catalog = OfferingCatalog(
        provider,
        config.product_ids,
        max_retries=config.offerings_max_retries,
        backoff_base=config.offerings_retry_backoff,
        sleep=sleep,
    )
    store = EntitlementStore(
        provider,
        events=events,
        verifier=verifier,
        offering_lookup=catalog.find,
        local_mirror=EntitlementMirror(local_store, LOCAL_MIRROR_KEY),
        shared_mirror=EntitlementMirror(shared_store, SHARED_MIRROR_KEY),
    )
    orchestrator = PurchaseOrchestrator(provider=provider, store=store, verifier=verifier)
    listener = TransactionUpdateListener(provider, store, verifier=verifier)
    feature_gate = FeatureGate(
        store,
        repository=KeyValueUsageCounterRepository(local_store),
        limits=config.free_limits(),
    )
    prompts = RetentionPromptState(events)
    reconciler = DismissalReconciler(
        store,
        feature_gate,
        prompts,
        guard=DismissalGuard(config.dismiss_debounce_seconds),
    )
    return EntitlementRuntime(
        config=config,
        provider=provider,
        events=events,
        catalog=catalog,
        store=store,
        orchestrator=orchestrator,
        listener=listener,
        feature_gate=feature_gate,
        prompts=prompts,
        reconciler=reconciler,
    )


@lru_cache(maxsize=1)
def get_entitlement_runtime() -> EntitlementRuntime:
    return build_runtime(load_entitlement_config())


__all__ = [
    "EntitlementRuntime",
    "LocalSandboxBillingProvider",
    "build_runtime",
    "get_entitlement_runtime",
    "sandbox_offerings",
]
