from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from packages.shared.schemas.order_v1 import OrderStatusV1
from services.storefront.app.models.order import Order, OrderDraft
from services.storefront.app.services.order_store_base import (
    OrderNotFoundError,
    OrderSubscriptions,
    SnapshotCallback,
    Unsubscribe,
    newest_first,
)


def apply_patch(order: Order, fields: dict[str, Any]) -> Order:
    patchable = set(Order.model_fields) - {"id"}
    bad = sorted(set(fields) - patchable)
    if bad:
        raise ValueError(f"Cannot patch order fields: {bad}")

    data = order.model_dump()
    data.update(fields)
    data["updated_at"] = datetime.now(timezone.utc)
    return Order.model_validate(data)


class InMemoryOrderStore:
    """Process-local order store. Used by the catalog session and in tests."""

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = threading.Lock()
        self._subscriptions = OrderSubscriptions()

    def create_order(self, draft: OrderDraft) -> str:
        order_id = uuid4().hex
        order = Order(id=order_id, **draft.model_dump())
        with self._lock:
            self._orders[order_id] = order
        self._subscriptions.publish(order.merchant_id, order.customer_id, self._query)
        return order_id

    def patch_order(self, order_id: str, fields: dict[str, Any]) -> Order:
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            updated = apply_patch(current, fields)
            self._orders[order_id] = updated
        self._subscriptions.publish(updated.merchant_id, updated.customer_id, self._query)
        return updated

    def get_order(self, order_id: str) -> Order | None:
        with self._lock:
            return self._orders.get(order_id)

    def list_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
    ) -> list[Order]:
        return self._query(merchant_id, customer_id, frozenset(statuses))

    def subscribe_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
        on_snapshot: SnapshotCallback,
    ) -> Unsubscribe:
        return self._subscriptions.add(merchant_id, customer_id, statuses, on_snapshot, self._query)

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def _query(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: frozenset[OrderStatusV1],
    ) -> list[Order]:
        with self._lock:
            matching = [
                o
                for o in self._orders.values()
                if o.merchant_id == merchant_id
                and o.customer_id == customer_id
                and o.status in statuses
            ]
        return newest_first(matching)


store = InMemoryOrderStore()
