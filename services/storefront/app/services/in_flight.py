from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class ActionInFlightError(Exception):
    def __init__(self, action: str, order_id: str) -> None:
        super().__init__(f"{action} is already in progress for order {order_id}")
        self.action = action
        self.order_id = order_id


class InFlightActions:
    """Per-(action, order) busy flags.

    Cancelling one order never blocks approving another. The flag is always
    reset when the guarded block exits, whether it raised or not.
    """

    def __init__(self) -> None:
        self._busy: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    @contextmanager
    def guard(self, action: str, order_id: str) -> Iterator[None]:
        key = (action, order_id)
        with self._lock:
            if key in self._busy:
                raise ActionInFlightError(action, order_id)
            self._busy.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(key)

    def is_busy(self, action: str, order_id: str) -> bool:
        with self._lock:
            return (action, order_id) in self._busy
