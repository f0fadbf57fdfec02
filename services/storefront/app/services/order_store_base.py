from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import uuid4

from packages.shared.schemas.order_v1 import OrderStatusV1
from services.storefront.app.models.order import Order, OrderDraft

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[Order]], None]
Unsubscribe = Callable[[], None]


class OrderStoreError(Exception):
    """Base class for order store errors."""


class OrderNotFoundError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}")
        self.order_id = order_id


class StorePermissionError(OrderStoreError):
    """The store rejected a read or write. The message carries the raw reason."""


class OrderStore(Protocol):
    def create_order(self, draft: OrderDraft) -> str: ...

    def patch_order(self, order_id: str, fields: dict[str, Any]) -> Order: ...

    def get_order(self, order_id: str) -> Order | None: ...

    def list_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
    ) -> list[Order]: ...

    def subscribe_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
        on_snapshot: SnapshotCallback,
    ) -> Unsubscribe: ...


def newest_first(orders: Iterable[Order]) -> list[Order]:
    return sorted(orders, key=lambda o: o.created_at, reverse=True)


@dataclass(frozen=True, slots=True)
class _Listener:
    merchant_id: str
    customer_id: str
    statuses: frozenset[OrderStatusV1]
    callback: SnapshotCallback


class OrderSubscriptions:
    """Listener registry shared by store implementations.

    A snapshot is pushed on subscribe and after every write that touches the
    listener's customer. Snapshots are recomputed through `query` so that each
    listener sees the full matching set, not a diff.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, _Listener] = {}
        self._lock = threading.Lock()

    def add(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
        callback: SnapshotCallback,
        query: Callable[[str, str, frozenset[OrderStatusV1]], list[Order]],
    ) -> Unsubscribe:
        listener_id = uuid4().hex
        listener = _Listener(
            merchant_id=merchant_id,
            customer_id=customer_id,
            statuses=frozenset(statuses),
            callback=callback,
        )
        with self._lock:
            self._listeners[listener_id] = listener

        self._deliver(listener, query)

        def _unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return _unsubscribe

    def publish(
        self,
        merchant_id: str,
        customer_id: str,
        query: Callable[[str, str, frozenset[OrderStatusV1]], list[Order]],
    ) -> None:
        with self._lock:
            targets = [
                listener
                for listener in self._listeners.values()
                if listener.merchant_id == merchant_id and listener.customer_id == customer_id
            ]
        for listener in targets:
            self._deliver(listener, query)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    @staticmethod
    def _deliver(
        listener: _Listener,
        query: Callable[[str, str, frozenset[OrderStatusV1]], list[Order]],
    ) -> None:
        snapshot = query(listener.merchant_id, listener.customer_id, listener.statuses)
        try:
            listener.callback(snapshot)
        except Exception:
            # One broken listener must not starve the others or fail the write.
            logger.exception(
                "Order snapshot listener failed merchant=%s customer=%s",
                listener.merchant_id,
                listener.customer_id,
            )
