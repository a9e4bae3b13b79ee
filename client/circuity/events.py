from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]


class EventHub(Generic[T]):
    """Synchronous observer list. Listeners run in subscription order."""

    def __init__(self) -> None:
        self._listeners: list[Listener[T]] = []

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, payload: T) -> None:
        # Copy so a listener may unsubscribe while being notified.
        for listener in list(self._listeners):
            listener(payload)

    def __len__(self) -> int:
        return len(self._listeners)
