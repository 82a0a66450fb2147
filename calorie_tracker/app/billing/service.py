"""Purchase orchestration against the external billing provider."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, Optional, Protocol, Sequence

from ..entitlements.events import PurchaseCompleted
from ..entitlements.exceptions import BillingError, ProviderError, VerificationFailed
from ..entitlements.models import (
    EntitlementState,
    Offering,
    RenewalInfo,
    Transaction,
    VerificationResult,
)
from ..entitlements.store import EntitlementStore
from ..entitlements.verification import ProviderTransactionVerifier, TransactionVerifier
from .models import (
    ProviderPurchaseResult,
    ProviderPurchaseStatus,
    PurchaseOutcome,
    PurchaseResult,
    PurchaseState,
)

logger = logging.getLogger("billing")


class BillingProvider(Protocol):
    """External billing capability (app store, payment SDK)."""

    async def list_offerings(self, ids: Iterable[str]) -> Sequence[Offering]:
        """Return offering metadata for the requested product identifiers."""

    async def purchase(self, offering: Offering) -> ProviderPurchaseResult:
        """Present the provider purchase flow and report its outcome."""

    def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        """Yield every transaction the provider currently considers entitling."""

    def entitlement_updates(self) -> AsyncIterator[VerificationResult]:
        """Yield entitlement-changing transactions as the provider pushes them."""

    async def acknowledge(self, transaction: Transaction) -> None:
        """Mark a transaction as finished so it is not redelivered."""

    async def sync(self) -> None:
        """Run the provider's restore flow."""

    async def renewal_info(self, product_id: str) -> Optional[RenewalInfo]:
        """Return renewal intent for a subscription product, if known."""


@dataclass
class _PurchaseAttempt:
    offering_id: str
    state: PurchaseState = PurchaseState.IDLE

    def advance(self, state: PurchaseState) -> None:
        logger.debug(
            "Purchase %s: %s -> %s",
            self.offering_id,
            self.state.value,
            state.value,
        )
        self.state = state


@dataclass
class PurchaseOrchestrator:
    """Drives purchase attempts and keeps the entitlement store in step.

    Calls are independent of each other. In-flight offering ids are tracked
    only so callers can disable repeat taps while a sheet is up.
    """

    provider: BillingProvider
    store: EntitlementStore
    verifier: TransactionVerifier = field(default_factory=ProviderTransactionVerifier)
    _in_flight: Counter[str] = field(default_factory=Counter, init=False, repr=False)

    def is_in_flight(self, offering_id: str) -> bool:
        return self._in_flight[offering_id] > 0

    async def purchase(self, offering: Offering) -> PurchaseResult:
        """Run one purchase attempt for ``offering``.

        Raises :class:`VerificationFailed` when the provider's proof does not
        verify and :class:`ProviderError` when the provider fails. Neither
        path touches the entitlement state.
        """

        attempt = _PurchaseAttempt(offering_id=offering.id)
        self._in_flight[offering.id] += 1
        try:
            return await self._run(attempt, offering)
        except BillingError:
            attempt.advance(PurchaseState.FAILED)
            raise
        finally:
            self._in_flight[offering.id] -= 1
            if self._in_flight[offering.id] <= 0:
                del self._in_flight[offering.id]

    async def restore_purchases(self) -> EntitlementState:
        """Re-run the provider restore flow, then reconcile."""

        try:
            await self.provider.sync()
        except Exception:
            logger.warning("Provider restore failed; reconciling with current data", exc_info=True)
        state = await self.store.reconcile()
        logger.info("Restore purchases finished entitled=%s", state.is_entitled)
        return state

    async def sync_transactions(self) -> bool:
        """Reconcile against the provider and report the entitlement flag."""

        logger.info("Manual transaction sync requested")
        state = await self.store.reconcile()
        return state.is_entitled

    async def _run(self, attempt: _PurchaseAttempt, offering: Offering) -> PurchaseResult:
        attempt.advance(PurchaseState.INITIATING)
        try:
            attempt.advance(PurchaseState.AWAITING_PROVIDER_RESULT)
            result = await self.provider.purchase(offering)
        except BillingError:
            raise
        except Exception as exc:
            logger.exception("Provider purchase call failed for %s", offering.id)
            raise ProviderError(detail={"offering_id": offering.id}) from exc

        if result.status == ProviderPurchaseStatus.USER_CANCELLED:
            attempt.advance(PurchaseState.CANCELLED)
            logger.info("User cancelled purchase of %s", offering.id)
            return PurchaseResult(
                outcome=PurchaseOutcome.CANCELLED,
                offering_id=offering.id,
                final_state=attempt.state,
            )

        if result.status == ProviderPurchaseStatus.PENDING:
            attempt.advance(PurchaseState.PENDING)
            logger.info("Purchase of %s is pending external approval", offering.id)
            return PurchaseResult(
                outcome=PurchaseOutcome.PENDING,
                offering_id=offering.id,
                final_state=attempt.state,
            )

        attempt.advance(PurchaseState.VERIFYING)
        try:
            transaction = self.verifier.verify(result.verification)
        except VerificationFailed:
            logger.warning(
                "Purchase of %s failed verification",
                offering.id,
                extra={"transaction_id": result.verification.transaction.transaction_id},
            )
            raise

        attempt.advance(PurchaseState.FINALIZING)
        state = await self.store.reconcile()
        if not state.is_entitled:
            state = await self.store.record_verified_purchase(transaction, offering)
        await self._acknowledge(transaction)
        self.store.events.publish(PurchaseCompleted(transaction=transaction, offering_id=offering.id))

        attempt.advance(PurchaseState.DONE)
        logger.info(
            "Purchase of %s completed entitled=%s",
            offering.id,
            state.is_entitled,
            extra={"transaction_id": transaction.transaction_id},
        )
        return PurchaseResult(
            outcome=PurchaseOutcome.COMPLETED,
            offering_id=offering.id,
            final_state=attempt.state,
            transaction=transaction,
            entitlement=state,
        )

    async def _acknowledge(self, transaction: Transaction) -> None:
        try:
            await self.provider.acknowledge(transaction)
        except Exception:
            logger.exception(
                "Failed to acknowledge transaction %s; provider will redeliver",
                transaction.transaction_id,
            )


__all__ = ["BillingProvider", "PurchaseOrchestrator"]
