"""Identifier-keyed bindings handed to the external purchase UI.

The purchase UI is owned by a third-party SDK that may drop or null out the
handle it was given as part of its own teardown. The handle therefore holds
nothing but a presentation id and a get/set pair over a shared flag; the
live presentation is kept by :class:`PaywallBindingRegistry` and looked up by
id when the dismissal side effects run.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterator, Optional
from uuid import uuid4


class _PresentedFlag:
    __slots__ = ("value",)

    def __init__(self, value: bool) -> None:
        self.value = value


class PresentationHandle:
    """Synchronous get/set access to a paywall's "is presented" flag."""

    __slots__ = ("presentation_id", "_getter", "_setter")

    def __init__(
        self,
        presentation_id: str,
        getter: Callable[[], bool],
        setter: Callable[[bool], None],
    ) -> None:
        self.presentation_id = presentation_id
        self._getter = getter
        self._setter = setter

    def get(self) -> bool:
        return self._getter()

    def set(self, value: bool) -> None:
        self._setter(value)


@dataclass
class PaywallPresentation:
    """One showing of the paywall."""

    presentation_id: str
    flag: _PresentedFlag
    purchase_completed: bool = False
    last_outcome: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_presented(self) -> bool:
        return self.flag.value

    def mark_purchase_completed(self) -> None:
        self.purchase_completed = True


def make_handle(
    presentation_id: str,
    flag: _PresentedFlag,
    on_dismiss: Callable[[str], None],
) -> PresentationHandle:
    """Build a handle whose closures capture only the flag, the id and the callback."""

    def getter() -> bool:
        return flag.value

    def setter(value: bool) -> None:
        was_presented = flag.value
        flag.value = bool(value)
        if was_presented and not value:
            on_dismiss(presentation_id)

    return PresentationHandle(presentation_id, getter, setter)


class PaywallBindingRegistry:
    """Keeps presentations alive independently of the handles given out.

    Finished presentations are retired rather than dropped: they no longer
    accept flag writes through :meth:`get`, but the most recent
    ``retired_limit`` of them stay readable through :meth:`find`.
    """

    def __init__(self, *, retired_limit: int = 256) -> None:
        self._presentations: Dict[str, PaywallPresentation] = {}
        self._retired: "OrderedDict[str, PaywallPresentation]" = OrderedDict()
        self._retired_limit = max(0, retired_limit)
        self._lock = Lock()

    def create(self, *, presented: bool = True) -> PaywallPresentation:
        presentation = PaywallPresentation(presentation_id=uuid4().hex, flag=_PresentedFlag(presented))
        with self._lock:
            self._presentations[presentation.presentation_id] = presentation
        return presentation

    def get(self, presentation_id: str) -> Optional[PaywallPresentation]:
        with self._lock:
            return self._presentations.get(presentation_id)

    def find(self, presentation_id: str) -> Optional[PaywallPresentation]:
        """Live or recently retired presentation."""

        with self._lock:
            return self._presentations.get(presentation_id) or self._retired.get(presentation_id)

    def retire(self, presentation_id: str) -> Optional[PaywallPresentation]:
        with self._lock:
            presentation = self._presentations.pop(presentation_id, None)
            if presentation is not None and self._retired_limit:
                self._retired[presentation_id] = presentation
                while len(self._retired) > self._retired_limit:
                    self._retired.popitem(last=False)
            return presentation

    def remove(self, presentation_id: str) -> Optional[PaywallPresentation]:
        with self._lock:
            retired = self._retired.pop(presentation_id, None)
            return self._presentations.pop(presentation_id, None) or retired

    def __contains__(self, presentation_id: object) -> bool:
        with self._lock:
            return presentation_id in self._presentations

    def __len__(self) -> int:
        with self._lock:
            return len(self._presentations)

    def __iter__(self) -> Iterator[PaywallPresentation]:
        with self._lock:
            return iter(list(self._presentations.values()))


__all__ = [
    "PaywallBindingRegistry",
    "PaywallPresentation",
    "PresentationHandle",
    "make_handle",
]
