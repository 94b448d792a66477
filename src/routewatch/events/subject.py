"""Observer subject — ordered callbacks with unsubscribe closures."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subject(Generic[T]):
    """Ordered set of callbacks notified with a single payload.

    A callback that raises is logged and skipped; the remaining callbacks
    still run.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        # dict keeps insertion order and gives set semantics
        self._callbacks: dict[Callable[[T], None], None] = {}

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        self._callbacks[callback] = None

        def unsubscribe() -> None:
            self._callbacks.pop(callback, None)

        return unsubscribe

    def notify(self, payload: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(payload)
            except Exception:
                logger.exception("Subscriber error in '%s'", self._name or "subject")

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
