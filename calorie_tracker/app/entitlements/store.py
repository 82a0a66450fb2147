"""Entitlement store: re-derives the entitlement state from the billing provider."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional, Protocol, Sequence

from .events import EntitlementChanged, EntitlementEventBus
from .exceptions import VerificationFailed
from .mirror import EntitlementMirror, MirrorRecord
from .models import EntitlementState, Offering, RenewalInfo, Transaction, VerificationResult
from .verification import ProviderTransactionVerifier, TransactionVerifier

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class EntitlementSource(Protocol):
    """The part of the billing provider consulted during reconciliation."""

    def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        ...

    async def renewal_info(self, product_id: str) -> Optional[RenewalInfo]:
        ...


OfferingLookup = Callable[[str], Optional[Offering]]


class EntitlementStore:
    """Single source of truth for whether the user is currently entitled.

    Every write replaces the complete :class:`EntitlementState`; there are no
    field-level updates. Two paths write: :meth:`reconcile`, which always
    re-derives the state from the provider's live entitlement set, and
    :meth:`record_verified_purchase`, the fast path used right after a verified
    purchase when the provider has not yet surfaced the new transaction.

    The store lives for the whole process. Mutation happens on the event loop
    that awaits :meth:`reconcile`, so concurrent callers converge on the last
    completed provider query. Mirror writes (file or database) run in a worker
    thread and never stall the loop.
    """

    def __init__(
        self,
        source: EntitlementSource,
        *,
        events: Optional[EntitlementEventBus] = None,
        verifier: Optional[TransactionVerifier] = None,
        offering_lookup: Optional[OfferingLookup] = None,
        local_mirror: Optional[EntitlementMirror] = None,
        shared_mirror: Optional[EntitlementMirror] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._source = source
        self._events = events or EntitlementEventBus()
        self._verifier = verifier or ProviderTransactionVerifier()
        self._offering_lookup = offering_lookup or (lambda _product_id: None)
        self._mirrors = tuple(mirror for mirror in (local_mirror, shared_mirror) if mirror is not None)
        self._local_mirror = local_mirror
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state = EntitlementState()
        self._persist_lock = asyncio.Lock()

    @property
    def events(self) -> EntitlementEventBus:
        return self._events

    @property
    def state(self) -> EntitlementState:
        return self._state

    @property
    def is_entitled(self) -> bool:
        return self._state.is_entitled

    @property
    def has_completed_initial_check(self) -> bool:
        return self._state.has_completed_initial_check

    def cold_start_hint(self) -> bool:
        """Last persisted flag, for reads before the first reconciliation finishes."""

        if self._state.has_completed_initial_check:
            return self._state.is_entitled
        if self._local_mirror is None:
            return False
        try:
            record = self._local_mirror.load()
        except Exception:
            logger.exception("Failed to read local entitlement mirror")
            return False
        return bool(record and record.is_entitled)

    async def reconcile(self) -> EntitlementState:
        """Re-derive the entitlement state from the provider's live entitlements.

        A provider failure leaves the previous state untouched, including
        ``has_completed_initial_check``.
        """

        try:
            active = await self._collect_active_subscriptions()
            latest = self._latest(active)
            renewal = await self._renewal_for(latest) if latest else None
        except Exception:
            logger.exception("Entitlement reconciliation failed; keeping previous state")
            return self._state

        if latest is None:
            state = EntitlementState(
                is_entitled=False,
                has_completed_initial_check=True,
                updated_at=self._clock(),
            )
        else:
            state = self._state_for(latest, renewal)
        return await self._commit(state)

    async def record_verified_purchase(
        self,
        transaction: Transaction,
        offering: Optional[Offering] = None,
    ) -> EntitlementState:
        """Write the complete state for a freshly verified purchase."""

        if not transaction.is_subscription or not transaction.is_active(self._clock()):
            return self._state
        state = EntitlementState(
            is_entitled=True,
            active_offering=offering or self._offering_lookup(transaction.product_id),
            active_product_id=transaction.product_id,
            expiration_date=transaction.expiration_date,
            will_renew=True,
            has_completed_initial_check=True,
            updated_at=self._clock(),
        )
        return await self._commit(state)

    async def subscription_status(self, product_id: str) -> str:
        """Renewal state of ``product_id`` as a string, or ``"not_subscribed"``."""

        try:
            info = await self._source.renewal_info(product_id)
        except Exception:
            logger.warning("Renewal info lookup failed for %s", product_id, exc_info=True)
            return "not_subscribed"
        if info is None:
            return "not_subscribed"
        return info.state.value

    async def _collect_active_subscriptions(self) -> List[Transaction]:
        now = self._clock()
        active: List[Transaction] = []
        async for result in self._source.current_entitlements():
            try:
                transaction = self._verifier.verify(result)
            except VerificationFailed as exc:
                logger.warning(
                    "Ignoring unverified entitlement %s",
                    result.transaction.transaction_id,
                    extra={"detail": dict(exc.payload)},
                )
                continue
            if not transaction.is_active(now):
                continue
            if not transaction.is_subscription:
                logger.debug(
                    "Skipping non-subscription entitlement %s (%s)",
                    transaction.product_id,
                    transaction.product_type.value,
                )
                continue
            active.append(transaction)
        return active

    @staticmethod
    def _latest(transactions: Sequence[Transaction]) -> Optional[Transaction]:
        if not transactions:
            return None
        return max(transactions, key=lambda txn: txn.expiration_date or _FAR_FUTURE)

    async def _renewal_for(self, transaction: Transaction) -> Optional[RenewalInfo]:
        try:
            return await self._source.renewal_info(transaction.product_id)
        except Exception:
            logger.warning(
                "Renewal info unavailable for %s",
                transaction.product_id,
                exc_info=True,
            )
            return None

    def _state_for(self, transaction: Transaction, renewal: Optional[RenewalInfo]) -> EntitlementState:
        return EntitlementState(
            is_entitled=True,
            active_offering=self._offering_lookup(transaction.product_id),
            active_product_id=transaction.product_id,
            expiration_date=transaction.expiration_date,
            will_renew=bool(renewal and renewal.will_auto_renew),
            has_completed_initial_check=True,
            updated_at=self._clock(),
        )

    async def _commit(self, state: EntitlementState) -> EntitlementState:
        previous = self._state
        self._state = state
        await self._persist()
        if previous.is_entitled != state.is_entitled:
            logger.info(
                "Entitlement changed: %s -> %s",
                previous.is_entitled,
                state.is_entitled,
                extra={"product_id": state.active_product_id},
            )
        self._events.publish(EntitlementChanged(previous=previous, current=state))
        return state

    async def _persist(self) -> None:
        # Mirror I/O runs off the event loop. Each queued writer saves the newest state.
        async with self._persist_lock:
            state = self._state
            record = MirrorRecord(is_entitled=state.is_entitled, updated_at=state.updated_at)
            for mirror in self._mirrors:
                await self._save_mirror(mirror, record)

    @staticmethod
    async def _save_mirror(mirror: EntitlementMirror, record: MirrorRecord) -> None:
        try:
            await asyncio.to_thread(mirror.save, record)
        except Exception:
            logger.exception(
                "Failed to persist entitlement mirror",
                extra={"key": mirror.key},
            )


__all__ = ["EntitlementSource", "EntitlementStore", "OfferingLookup"]
