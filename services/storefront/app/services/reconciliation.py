from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from packages.shared.schemas.order_v1 import ACTIVE_STATUSES, NotificationTypeV1, OrderStatusV1
from services.storefront.app.models.order import Order
from services.storefront.app.services.order_store_base import OrderStore, Unsubscribe

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderPartitions:
    pending: list[Order] = field(default_factory=list)
    awaiting_approval: list[Order] = field(default_factory=list)
    approved: list[Order] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ObservedTransition:
    type: NotificationTypeV1
    order: Order


# Every status must be listed; None means the order is not shown in any view.
PARTITION_BY_STATUS: dict[OrderStatusV1, str | None] = {
    OrderStatusV1.PENDING_PAYMENT: None,
    OrderStatusV1.PENDING: "pending",
    OrderStatusV1.AWAITING_APPROVAL: "awaiting_approval",
    OrderStatusV1.APPROVED: "approved",
    OrderStatusV1.COMPLETED: None,
    OrderStatusV1.CANCELLED: None,
}


def partition_orders(orders: Iterable[Order]) -> OrderPartitions:
    parts = OrderPartitions()
    for order in orders:
        name = PARTITION_BY_STATUS[order.status]
        if name is not None:
            getattr(parts, name).append(order)
    return parts


class ReconciliationEngine:
    """Keeps the customer's pending / awaiting-approval / approved views live.

    Effects fire on transitions into a state, never on steady-state presence:
    a snapshot identical to the previous one produces nothing.
    """

    def __init__(
        self,
        store: OrderStore,
        *,
        on_transition: Callable[[ObservedTransition], None],
        on_partitions: Callable[[OrderPartitions], None] | None = None,
    ) -> None:
        self._store = store
        self._on_transition = on_transition
        self._on_partitions = on_partitions

        self._unsubscribe: Unsubscribe | None = None
        self._seen_first_snapshot = False
        self._previous = OrderPartitions()

    @property
    def partitions(self) -> OrderPartitions:
        return self._previous

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def start(self, merchant_id: str, customer_id: str) -> None:
        self.stop()
        logger.debug("Subscribing to orders merchant=%s customer=%s", merchant_id, customer_id)
        self._unsubscribe = self._store.subscribe_orders(
            merchant_id,
            customer_id,
            ACTIVE_STATUSES,
            self.apply_snapshot,
        )

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._seen_first_snapshot = False
        self._previous = OrderPartitions()
        if self._on_partitions is not None:
            self._on_partitions(self._previous)

    def apply_snapshot(self, orders: list[Order]) -> None:
        current = partition_orders(orders)
        by_id = {o.id: o for o in orders}

        transitions: list[ObservedTransition] = []
        transitions.extend(self._completions(current, by_id))
        if self._seen_first_snapshot:
            transitions.extend(self._new_awaiting(current))

        self._previous = current
        self._seen_first_snapshot = True

        if self._on_partitions is not None:
            self._on_partitions(current)

        for transition in transitions:
            logger.info(
                "Observed %s for order=%s", transition.type.value, transition.order.order_number
            )
            self._on_transition(transition)

    def _completions(
        self,
        current: OrderPartitions,
        by_id: dict[str, Order],
    ) -> list[ObservedTransition]:
        pairs = (
            (self._previous.pending, current.pending),
            (self._previous.awaiting_approval, current.awaiting_approval),
            (self._previous.approved, current.approved),
        )
        out: list[ObservedTransition] = []
        seen: set[str] = set()
        for prev_orders, cur_orders in pairs:
            cur_ids = {o.id for o in cur_orders}
            for prev in prev_orders:
                if prev.id in cur_ids or prev.id in seen:
                    continue
                seen.add(prev.id)
                resolved = by_id.get(prev.id) or self._lookup(prev.id)
                if resolved is not None and resolved.status == OrderStatusV1.COMPLETED:
                    out.append(ObservedTransition(NotificationTypeV1.ORDER_COMPLETED, resolved))
        return out

    def _new_awaiting(self, current: OrderPartitions) -> list[ObservedTransition]:
        prev_ids = {o.id for o in self._previous.awaiting_approval}
        return [
            ObservedTransition(NotificationTypeV1.ORDER_AWAITING_APPROVAL, order)
            for order in current.awaiting_approval
            if order.id not in prev_ids
        ]

    def _lookup(self, order_id: str) -> Order | None:
        # Closed orders drop out of the active filter, so their final status
        # has to be read back from the store.
        try:
            return self._store.get_order(order_id)
        except Exception:
            logger.exception("Could not resolve status of order=%s", order_id)
            return None
