"""Paywall presentation bindings and dismissal reconciliation."""
from .bindings import PaywallBindingRegistry, PaywallPresentation, PresentationHandle, make_handle
from .debounce import DEFAULT_DEBOUNCE_SECONDS, DismissalGuard
from .prompts import RetentionPrompter, RetentionPromptState
from .reconciler import DismissalOutcome, DismissalReconciler

__all__ = [
    "DEFAULT_DEBOUNCE_SECONDS",
    "DismissalGuard",
    "DismissalOutcome",
    "DismissalReconciler",
    "PaywallBindingRegistry",
    "PaywallPresentation",
    "PresentationHandle",
    "RetentionPromptState",
    "RetentionPrompter",
    "make_handle",
]
