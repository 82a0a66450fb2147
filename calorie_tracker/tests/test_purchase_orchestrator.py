from __future__ import annotations

import asyncio

import pytest

from calorie_tracker.app.billing import (
    ProviderError,
    ProviderPurchaseResult,
    PurchaseOrchestrator,
    PurchaseOutcome,
    PurchaseState,
    VerificationFailed,
)
from calorie_tracker.app.entitlements import (
    HMACTransactionSigner,
    PeriodUnit,
    PurchaseCompleted,
    SignedTransactionVerifier,
    VerificationResult,
)

YEARLY = "calCalculator.yearly.premium"


@pytest.fixture
def yearly(make_offering):
    return make_offering(YEARLY, PeriodUnit.YEAR, "59.99")


@pytest.fixture
def orchestrator(provider, store) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(provider=provider, store=store)


@pytest.mark.asyncio
async def test_completed_purchase_updates_state_before_returning(
    orchestrator, provider, store, yearly, make_transaction
) -> None:
    transaction = make_transaction(YEARLY)
    provider.purchase_results = [ProviderPurchaseResult.success(VerificationResult.trusted(transaction))]

    result = await orchestrator.purchase(yearly)

    assert result.outcome == PurchaseOutcome.COMPLETED
    assert result.final_state == PurchaseState.DONE
    assert result.transaction == transaction
    assert store.is_entitled is True
    assert store.state.active_product_id == YEARLY
    assert provider.acknowledged == [transaction.transaction_id]


@pytest.mark.asyncio
async def test_completed_purchase_publishes_event(orchestrator, provider, events, yearly, make_transaction) -> None:
    received = []
    events.subscribe(received.append)
    transaction = make_transaction(YEARLY)
    provider.purchase_results = [ProviderPurchaseResult.success(VerificationResult.trusted(transaction))]

    await orchestrator.purchase(yearly)

    completed = [event for event in received if isinstance(event, PurchaseCompleted)]
    assert len(completed) == 1
    assert completed[0].offering_id == YEARLY


@pytest.mark.asyncio
async def test_fast_path_used_when_provider_lags(orchestrator, provider, store, yearly, make_transaction) -> None:
    provider.grant_on_purchase = False
    transaction = make_transaction(YEARLY)
    provider.purchase_results = [ProviderPurchaseResult.success(VerificationResult.trusted(transaction))]

    result = await orchestrator.purchase(yearly)

    assert result.entitlement is not None and result.entitlement.is_entitled is True
    assert store.is_entitled is True
    assert store.state.active_offering == yearly


@pytest.mark.asyncio
async def test_user_cancelled_leaves_state_untouched(orchestrator, provider, store, yearly) -> None:
    provider.purchase_results = [ProviderPurchaseResult.user_cancelled()]
    before = store.state

    result = await orchestrator.purchase(yearly)

    assert result.outcome == PurchaseOutcome.CANCELLED
    assert result.final_state == PurchaseState.CANCELLED
    assert result.transaction is None
    assert store.state is before
    assert provider.entitlement_calls == 0


@pytest.mark.asyncio
async def test_pending_purchase_leaves_state_untouched(orchestrator, provider, store, yearly) -> None:
    provider.purchase_results = [ProviderPurchaseResult.pending()]

    result = await orchestrator.purchase(yearly)

    assert result.outcome == PurchaseOutcome.PENDING
    assert store.is_entitled is False
    assert store.has_completed_initial_check is False


@pytest.mark.asyncio
async def test_unverified_purchase_raises_and_never_grants(orchestrator, provider, store, yearly, make_transaction) -> None:
    unverified = VerificationResult.untrusted(make_transaction(YEARLY), "jws invalid")
    provider.purchase_results = [ProviderPurchaseResult.success(unverified)]

    with pytest.raises(VerificationFailed) as exc:
        await orchestrator.purchase(yearly)

    assert exc.value.status_code == 402
    assert exc.value.payload["reason"] == "jws invalid"
    assert store.is_entitled is False
    assert provider.acknowledged == []


@pytest.mark.asyncio
async def test_signature_mismatch_raises_verification_failed(provider, store, yearly, make_transaction) -> None:
    signer = HMACTransactionSigner("secret")
    orchestrator = PurchaseOrchestrator(provider=provider, store=store, verifier=SignedTransactionVerifier(signer))
    transaction = make_transaction(YEARLY)
    forged = VerificationResult.trusted(transaction, signature=HMACTransactionSigner("other").sign(transaction.to_claims()))
    provider.grant_on_purchase = False
    provider.purchase_results = [ProviderPurchaseResult.success(forged)]

    with pytest.raises(VerificationFailed):
        await orchestrator.purchase(yearly)

    assert store.is_entitled is False


@pytest.mark.asyncio
async def test_provider_exception_is_wrapped(orchestrator, provider, store, yearly) -> None:
    provider.purchase_results = [RuntimeError("sheet crashed")]

    with pytest.raises(ProviderError) as exc:
        await orchestrator.purchase(yearly)

    assert exc.value.retryable is True
    assert exc.value.payload["offering_id"] == YEARLY
    assert store.is_entitled is False
    assert orchestrator.is_in_flight(YEARLY) is False


@pytest.mark.asyncio
async def test_acknowledge_failure_does_not_fail_purchase(orchestrator, provider, store, yearly, make_transaction) -> None:
    provider.acknowledge_error = RuntimeError("ack failed")
    provider.purchase_results = [ProviderPurchaseResult.success(VerificationResult.trusted(make_transaction(YEARLY)))]

    result = await orchestrator.purchase(yearly)

    assert result.is_completed is True
    assert store.is_entitled is True


@pytest.mark.asyncio
async def test_in_flight_tracking_during_purchase(provider, store, yearly, make_transaction) -> None:
    release = asyncio.Event()
    transaction = make_transaction(YEARLY)

    async def slow_purchase(offering):
        await release.wait()
        return ProviderPurchaseResult.success(VerificationResult.trusted(transaction))

    provider.purchase = slow_purchase
    orchestrator = PurchaseOrchestrator(provider=provider, store=store)

    task = asyncio.create_task(orchestrator.purchase(yearly))
    await asyncio.sleep(0)
    assert orchestrator.is_in_flight(YEARLY) is True

    release.set()
    await task
    assert orchestrator.is_in_flight(YEARLY) is False


@pytest.mark.asyncio
async def test_overlapping_purchases_keep_offering_in_flight(provider, store, yearly, make_transaction) -> None:
    gates = [asyncio.Event(), asyncio.Event()]
    transactions = [make_transaction(YEARLY), make_transaction(YEARLY)]
    calls = []

    async def slow_purchase(offering):
        index = len(calls)
        calls.append(offering.id)
        await gates[index].wait()
        if index == 0:
            return ProviderPurchaseResult.user_cancelled()
        return ProviderPurchaseResult.success(VerificationResult.trusted(transactions[index]))

    provider.purchase = slow_purchase
    orchestrator = PurchaseOrchestrator(provider=provider, store=store)

    first = asyncio.create_task(orchestrator.purchase(yearly))
    second = asyncio.create_task(orchestrator.purchase(yearly))
    await asyncio.sleep(0)

    gates[0].set()
    assert (await first).outcome == PurchaseOutcome.CANCELLED
    assert orchestrator.is_in_flight(YEARLY) is True

    gates[1].set()
    await second
    assert orchestrator.is_in_flight(YEARLY) is False


@pytest.mark.asyncio
async def test_restore_tolerates_sync_failure(orchestrator, provider, make_transaction) -> None:
    provider.sync_error = RuntimeError("restore unavailable")
    provider.entitlements = [VerificationResult.trusted(make_transaction(YEARLY))]

    state = await orchestrator.restore_purchases()

    assert provider.sync_calls == 1
    assert state.is_entitled is True


@pytest.mark.asyncio
async def test_sync_transactions_reports_flag(orchestrator, provider) -> None:
    assert await orchestrator.sync_transactions() is False
    assert provider.entitlement_calls == 1
