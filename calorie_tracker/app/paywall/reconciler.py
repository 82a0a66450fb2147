"""Reconciles entitlement state after the paywall closes without a purchase."""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from threading import Lock
from typing import Optional, Set

from ..entitlements.store import EntitlementStore
from ..feature_gates.gate import FeatureGate
from .bindings import PaywallBindingRegistry, PaywallPresentation, PresentationHandle, make_handle
from .debounce import DismissalGuard
from .prompts import RetentionPrompter

logger = logging.getLogger(__name__)


class DismissalOutcome(str, Enum):
    PROMPTED = "prompted"
    PROMPT_ALREADY_SHOWING = "prompt_already_showing"
    ENTITLED = "entitled"
    DEBOUNCED = "debounced"
    PURCHASE_COMPLETED = "purchase_completed"
    UNKNOWN_PRESENTATION = "unknown_presentation"


_TERMINAL_OUTCOMES = frozenset(
    {DismissalOutcome.PROMPTED, DismissalOutcome.ENTITLED, DismissalOutcome.PURCHASE_COMPLETED}
)


class DismissalReconciler:
    """Decides what happens after a paywall is dismissed.

    Closing the paywall never waits on this class: the handle's setter flips
    the flag synchronously and only schedules :meth:`handle_dismissal` on the
    event loop.
    """

    def __init__(
        self,
        store: EntitlementStore,
        feature_gate: FeatureGate,
        prompter: RetentionPrompter,
        *,
        registry: Optional[PaywallBindingRegistry] = None,
        guard: Optional[DismissalGuard] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._store = store
        self._feature_gate = feature_gate
        self._prompter = prompter
        self.registry = registry or PaywallBindingRegistry()
        self._guard = guard or DismissalGuard()
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()
        self._scheduled = 0
        self._scheduled_lock = Lock()
        self.cycles = 0

    def present(self, *, presented: bool = True) -> PresentationHandle:
        """Register a new paywall presentation and return the handle for the UI."""

        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        presentation = self.registry.create(presented=presented)
        logger.debug("Paywall presentation %s registered", presentation.presentation_id)
        return make_handle(presentation.presentation_id, presentation.flag, self.schedule_dismissal)

    def handle_for(self, presentation_id: str) -> Optional[PresentationHandle]:
        """Rebuild a handle for an existing presentation, e.g. from an API call."""

        presentation = self.registry.get(presentation_id)
        if presentation is None:
            return None
        return make_handle(presentation_id, presentation.flag, self.schedule_dismissal)

    def mark_purchase_completed(self, presentation_id: str) -> bool:
        presentation = self.registry.get(presentation_id)
        if presentation is None:
            return False
        presentation.mark_purchase_completed()
        return True

    def release(self, presentation_id: str) -> bool:
        return self.registry.remove(presentation_id) is not None

    def schedule_dismissal(self, presentation_id: str) -> None:
        """Queue the dismissal cycle; safe to call from any thread."""

        loop = self._loop
        if loop is None:
            raise RuntimeError("DismissalReconciler has no event loop; call present() inside the loop first")
        with self._scheduled_lock:
            self._scheduled += 1
        loop.call_soon_threadsafe(self._spawn, presentation_id)

    def _spawn(self, presentation_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._run(presentation_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        with self._scheduled_lock:
            self._scheduled -= 1

    async def _run(self, presentation_id: str) -> None:
        try:
            await self.handle_dismissal(presentation_id)
        except Exception:
            logger.exception("Paywall dismissal handling failed for %s", presentation_id)

    async def handle_dismissal(self, presentation_id: str) -> DismissalOutcome:
        presentation = self.registry.get(presentation_id)
        if presentation is None:
            return DismissalOutcome.UNKNOWN_PRESENTATION
        if presentation.purchase_completed:
            return self._finish(presentation, DismissalOutcome.PURCHASE_COMPLETED)

        if not self._guard.try_enter():
            logger.debug("Dismissal of %s dropped by debounce", presentation_id)
            return DismissalOutcome.DEBOUNCED

        try:
            self.cycles += 1
            state = await self._store.reconcile()
            if state.is_entitled:
                self._feature_gate.reset_all()
                outcome = DismissalOutcome.ENTITLED
            elif self._prompter.is_showing:
                outcome = DismissalOutcome.PROMPT_ALREADY_SHOWING
            else:
                self._prompter.show(presentation_id)
                outcome = DismissalOutcome.PROMPTED
        finally:
            self._guard.exit()

        logger.info(
            "Paywall %s dismissed: %s",
            presentation_id,
            outcome.value,
        )
        return self._finish(presentation, outcome)

    def _finish(self, presentation: PaywallPresentation, outcome: DismissalOutcome) -> DismissalOutcome:
        presentation.last_outcome = outcome.value
        # A closed paywall with a terminal outcome will not be dismissed again.
        if outcome in _TERMINAL_OUTCOMES and not presentation.is_presented:
            self.registry.retire(presentation.presentation_id)
        return outcome

    async def drain(self) -> None:
        """Wait until every scheduled dismissal cycle has finished."""

        while True:
            with self._scheduled_lock:
                scheduled = self._scheduled
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            elif scheduled:
                await asyncio.sleep(0)
            else:
                return


__all__ = ["DismissalOutcome", "DismissalReconciler"]
