from __future__ import annotations

import gc

import pytest

from calorie_tracker.app.entitlements import RetentionPromptRequested, VerificationResult
from calorie_tracker.app.feature_gates import FeatureGate, GatedFeature
from calorie_tracker.app.paywall import (
    DismissalGuard,
    DismissalOutcome,
    DismissalReconciler,
    PaywallBindingRegistry,
    RetentionPromptState,
)

MONTHLY = "calCalculator.monthly.premium"


class FakeClock:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock()


@pytest.fixture
def feature_gate(store) -> FeatureGate:
    return FeatureGate(store)


@pytest.fixture
def prompts(events) -> RetentionPromptState:
    return RetentionPromptState(events)


@pytest.fixture
def reconciler(store, feature_gate, prompts, monotonic) -> DismissalReconciler:
    return DismissalReconciler(store, feature_gate, prompts, guard=DismissalGuard(0.5, clock=monotonic))


def test_guard_rejects_reentry_and_rapid_repeats(monotonic) -> None:
    guard = DismissalGuard(0.5, clock=monotonic)

    assert guard.try_enter() is True
    assert guard.try_enter() is False
    guard.exit()
    monotonic.advance(0.5)
    assert guard.try_enter() is False
    monotonic.advance(0.01)
    assert guard.try_enter() is True


@pytest.mark.asyncio
async def test_setter_flips_flag_synchronously(reconciler, provider) -> None:
    handle = reconciler.present()

    handle.set(False)

    assert handle.get() is False
    assert provider.entitlement_calls == 0
    await reconciler.drain()
    assert provider.entitlement_calls == 1


@pytest.mark.asyncio
async def test_dismissal_without_purchase_shows_retention_prompt(reconciler, prompts, events) -> None:
    received = []
    events.subscribe(received.append)
    handle = reconciler.present()

    handle.set(False)
    await reconciler.drain()

    assert prompts.is_showing is True
    assert prompts.times_shown == 1
    requested = [event for event in received if isinstance(event, RetentionPromptRequested)]
    assert [event.presentation_id for event in requested] == [handle.presentation_id]
    assert reconciler.registry.find(handle.presentation_id).last_outcome == DismissalOutcome.PROMPTED.value


@pytest.mark.asyncio
async def test_prompt_not_shown_twice(reconciler, prompts, monotonic) -> None:
    first = reconciler.present()
    first.set(False)
    await reconciler.drain()

    monotonic.advance(1.0)
    outcome = await reconciler.handle_dismissal(reconciler.present().presentation_id)

    assert outcome == DismissalOutcome.PROMPT_ALREADY_SHOWING
    assert prompts.times_shown == 1


@pytest.mark.asyncio
async def test_entitled_after_dismissal_resets_counters(
    reconciler, provider, feature_gate, prompts, make_transaction
) -> None:
    feature_gate.record_usage(GatedFeature.ANALYSIS)
    assert feature_gate.counter(GatedFeature.ANALYSIS).count == 1

    provider.entitlements = [VerificationResult.trusted(make_transaction(MONTHLY))]
    presentation_id = reconciler.present().presentation_id

    outcome = await reconciler.handle_dismissal(presentation_id)

    assert outcome == DismissalOutcome.ENTITLED
    assert prompts.is_showing is False
    assert feature_gate.counter(GatedFeature.ANALYSIS).count == 0


@pytest.mark.asyncio
async def test_rapid_dismissals_run_one_cycle(reconciler, provider) -> None:
    handles = [reconciler.present() for _ in range(3)]

    for handle in handles:
        handle.set(False)
    await reconciler.drain()

    assert reconciler.cycles == 1
    assert provider.entitlement_calls == 1


@pytest.mark.asyncio
async def test_dismissal_after_window_runs_again(reconciler, provider, monotonic) -> None:
    reconciler.present().set(False)
    await reconciler.drain()
    monotonic.advance(0.6)

    reconciler.present().set(False)
    await reconciler.drain()

    assert reconciler.cycles == 2


@pytest.mark.asyncio
async def test_setting_true_does_not_schedule(reconciler, provider) -> None:
    handle = reconciler.present(presented=False)

    handle.set(True)
    await reconciler.drain()

    assert handle.get() is True
    assert reconciler.cycles == 0


@pytest.mark.asyncio
async def test_completed_purchase_skips_dismissal_cycle(reconciler, prompts) -> None:
    handle = reconciler.present()
    reconciler.mark_purchase_completed(handle.presentation_id)

    handle.set(False)
    await reconciler.drain()

    assert reconciler.cycles == 0
    assert prompts.is_showing is False


@pytest.mark.asyncio
async def test_dismissal_survives_dropped_handle(reconciler, provider) -> None:
    handle = reconciler.present()
    presentation_id = handle.presentation_id

    handle.set(False)
    del handle
    gc.collect()
    await reconciler.drain()

    assert reconciler.registry.find(presentation_id).last_outcome == DismissalOutcome.PROMPTED.value


@pytest.mark.asyncio
async def test_released_presentation_is_ignored(reconciler, prompts) -> None:
    handle = reconciler.present()
    assert reconciler.release(handle.presentation_id) is True

    handle.set(False)
    await reconciler.drain()

    assert reconciler.cycles == 0
    assert prompts.is_showing is False


@pytest.mark.asyncio
async def test_unknown_presentation_outcome(reconciler) -> None:
    assert await reconciler.handle_dismissal("missing") == DismissalOutcome.UNKNOWN_PRESENTATION


@pytest.mark.asyncio
async def test_guard_released_when_reconcile_raises(reconciler, store, monotonic) -> None:
    async def broken_reconcile():
        raise RuntimeError("store unavailable")

    store.reconcile = broken_reconcile
    presentation_id = reconciler.present().presentation_id

    with pytest.raises(RuntimeError):
        await reconciler.handle_dismissal(presentation_id)

    assert reconciler._guard.in_progress is False


def test_retention_prompt_dismiss_allows_next_prompt(prompts) -> None:
    assert prompts.show("one") is True
    assert prompts.show("two") is False
    prompts.dismiss()
    assert prompts.show("three") is True
    assert prompts.times_shown == 2


@pytest.mark.asyncio
async def test_closed_presentation_is_retired_after_terminal_outcome(reconciler) -> None:
    handle = reconciler.present()

    handle.set(False)
    await reconciler.drain()

    assert handle.presentation_id not in reconciler.registry
    assert reconciler.registry.get(handle.presentation_id) is None
    assert reconciler.registry.find(handle.presentation_id).last_outcome == DismissalOutcome.PROMPTED.value
    assert reconciler.handle_for(handle.presentation_id) is None


@pytest.mark.asyncio
async def test_debounced_presentation_stays_registered(reconciler) -> None:
    first, second = reconciler.present(), reconciler.present()

    first.set(False)
    second.set(False)
    await reconciler.drain()

    assert first.presentation_id not in reconciler.registry
    assert second.presentation_id in reconciler.registry
    assert reconciler.registry.get(second.presentation_id).last_outcome is None


@pytest.mark.asyncio
async def test_open_presentation_is_not_retired(reconciler) -> None:
    handle = reconciler.present()

    outcome = await reconciler.handle_dismissal(handle.presentation_id)

    assert outcome == DismissalOutcome.PROMPTED
    assert handle.presentation_id in reconciler.registry


def test_retired_presentations_are_bounded() -> None:
    registry = PaywallBindingRegistry(retired_limit=2)
    ids = [registry.create(presented=False).presentation_id for _ in range(3)]

    for presentation_id in ids:
        registry.retire(presentation_id)

    assert len(registry) == 0
    assert registry.find(ids[0]) is None
    assert registry.find(ids[2]) is not None
    assert registry.remove(ids[2]) is not None
    assert registry.find(ids[2]) is None
