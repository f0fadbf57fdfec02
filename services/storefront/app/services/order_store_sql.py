from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from packages.shared.schemas.order_v1 import OrderStatusV1
from services.storefront.app.db.database import db_session
from services.storefront.app.db.models import OnlineOrder
from services.storefront.app.models.order import Order, OrderDraft
from services.storefront.app.services.order_store_base import (
    OrderNotFoundError,
    OrderStoreError,
    OrderSubscriptions,
    SnapshotCallback,
    StorePermissionError,
    Unsubscribe,
)
from services.storefront.app.services.order_store_memory import apply_patch
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

# Listeners outlive the request-scoped sessions that write orders.
_SUBSCRIPTIONS = OrderSubscriptions()

_PERMISSION_MARKERS = ("readonly", "read-only", "permission denied", "access denied")


def _wrap_db_error(e: SQLAlchemyError) -> OrderStoreError:
    reason = str(getattr(e, "orig", None) or e)
    if isinstance(e, OperationalError) and any(m in reason.lower() for m in _PERMISSION_MARKERS):
        return StorePermissionError(reason)
    return OrderStoreError(reason)


def _row_to_order(row: OnlineOrder) -> Order:
    return Order.model_validate({**row.payload_json, "id": row.id})


def _query_active(
    merchant_id: str,
    customer_id: str,
    statuses: frozenset[OrderStatusV1],
) -> list[Order]:
    db = db_session()
    try:
        return _select_orders(db, merchant_id, customer_id, statuses)
    finally:
        db.close()


def _select_orders(
    db: Session,
    merchant_id: str,
    customer_id: str,
    statuses: Iterable[OrderStatusV1],
) -> list[Order]:
    status_values = [s.value for s in statuses]
    if not status_values:
        return []

    rows = (
        db.query(OnlineOrder)
        .filter(OnlineOrder.merchant_id == merchant_id)
        .filter(OnlineOrder.customer_id == customer_id)
        .filter(OnlineOrder.status.in_(status_values))
        .order_by(OnlineOrder.created_at.desc())
        .all()
    )
    return [_row_to_order(r) for r in rows]


class SqlOrderStore:
    """Order store backed by the online_orders table.

    The full order lives in payload_json; status and ownership columns are
    mirrored for filtering.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def create_order(self, draft: OrderDraft) -> str:
        order_id = uuid4().hex
        order = Order(id=order_id, **draft.model_dump())
        row = OnlineOrder(
            id=order_id,
            merchant_id=order.merchant_id,
            customer_id=order.customer_id,
            order_number=order.order_number,
            status=order.status.value,
            payload_json=order.model_dump(mode="json", exclude={"id"}),
            created_at=order.created_at,
            updated_at=order.created_at,
        )
        try:
            self._db.add(row)
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise _wrap_db_error(e) from e

        _SUBSCRIPTIONS.publish(order.merchant_id, order.customer_id, _query_active)
        return order_id

    def patch_order(self, order_id: str, fields: dict[str, Any]) -> Order:
        row = self._db.get(OnlineOrder, order_id)
        if row is None:
            raise OrderNotFoundError(order_id)

        updated = apply_patch(_row_to_order(row), fields)
        row.status = updated.status.value
        row.payload_json = updated.model_dump(mode="json", exclude={"id"})
        row.updated_at = updated.updated_at or datetime.now(timezone.utc)
        try:
            self._db.commit()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise _wrap_db_error(e) from e

        _SUBSCRIPTIONS.publish(updated.merchant_id, updated.customer_id, _query_active)
        return updated

    def get_order(self, order_id: str) -> Order | None:
        row = self._db.get(OnlineOrder, order_id)
        if row is None:
            return None
        return _row_to_order(row)

    def list_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
    ) -> list[Order]:
        try:
            return _select_orders(self._db, merchant_id, customer_id, statuses)
        except SQLAlchemyError as e:
            raise _wrap_db_error(e) from e

    def subscribe_orders(
        self,
        merchant_id: str,
        customer_id: str,
        statuses: Iterable[OrderStatusV1],
        on_snapshot: SnapshotCallback,
    ) -> Unsubscribe:
        return _SUBSCRIPTIONS.add(merchant_id, customer_id, statuses, on_snapshot, _query_active)
