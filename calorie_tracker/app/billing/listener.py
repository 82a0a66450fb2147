"""Background consumer of the provider's entitlement update stream."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..entitlements.events import SubscriptionUpdate
from ..entitlements.exceptions import VerificationFailed
from ..entitlements.models import Transaction, TransactionReason, VerificationResult
from ..entitlements.store import EntitlementStore
from ..entitlements.verification import ProviderTransactionVerifier, TransactionVerifier
from .service import BillingProvider

logger = logging.getLogger(__name__)


class TransactionUpdateListener:
    """Feeds every pushed transaction into the entitlement store, in order.

    Each event is handled as one unit (verify, apply, acknowledge). The unit
    is shielded from cancellation and :meth:`stop` waits for it, so shutting
    down never leaves an event half-applied. Unacknowledged transactions are
    redelivered by the provider and re-applying them is idempotent.
    """

    def __init__(
        self,
        provider: BillingProvider,
        store: EntitlementStore,
        *,
        verifier: Optional[TransactionVerifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._verifier = verifier or ProviderTransactionVerifier()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Future] = None
        self.processed = 0
        self.discarded = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the listener once; later calls return the same task."""

        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name="transaction-update-listener"
            )
            logger.info("Transaction update listener started")
        return self._task

    async def stop(self) -> None:
        """Cancel the listener at process shutdown."""

        task = self._task
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        current = self._current
        if current is not None and not current.done():
            with contextlib.suppress(Exception):
                await current
        logger.info("Transaction update listener stopped")

    async def _run(self) -> None:
        try:
            async for result in self._provider.entitlement_updates():
                self._current = asyncio.ensure_future(self._process(result))
                await asyncio.shield(self._current)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Transaction update stream terminated unexpectedly")

    async def _process(self, result: VerificationResult) -> None:
        try:
            transaction = self._verifier.verify(result)
        except VerificationFailed as exc:
            self.discarded += 1
            logger.warning(
                "Discarding unverified transaction update %s",
                result.transaction.transaction_id,
                extra={"detail": dict(exc.payload)},
            )
            return

        try:
            now = self._clock()
            logger.info(
                "Transaction update id=%s product=%s expired=%s revoked=%s",
                transaction.transaction_id,
                transaction.product_id,
                transaction.is_expired(now),
                transaction.is_revoked,
            )
            if transaction.is_subscription:
                await self._store.reconcile()
                if transaction.is_active(now):
                    self._announce_renewal(transaction)
            await self._provider.acknowledge(transaction)
            self.processed += 1
        except Exception:
            logger.exception(
                "Failed to process transaction update %s",
                transaction.transaction_id,
            )

    def _announce_renewal(self, transaction: Transaction) -> None:
        is_renewal = transaction.reason == TransactionReason.RENEWAL
        is_restoration = transaction.is_restoration
        if not (is_renewal or is_restoration):
            return
        self._store.events.publish(
            SubscriptionUpdate(
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
                is_renewal=is_renewal,
                is_restoration=is_restoration,
            )
        )


__all__ = ["TransactionUpdateListener"]
