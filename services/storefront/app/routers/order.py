from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from packages.shared.schemas.order_v1 import ACTIVE_STATUSES
from services.storefront.app.db.deps import get_db
from services.storefront.app.models.order import (
    AuthorizationOut,
    CustomerOrdersView,
    Order,
    OrderActionRequest,
    PlaceOrderRequest,
)
from services.storefront.app.services.audit_log import log_event
from services.storefront.app.services.cart import Cart
from services.storefront.app.services.in_flight import ActionInFlightError, InFlightActions
from services.storefront.app.services.lifecycle import (
    OrderAction,
    OrderLifecycle,
    OrderLifecycleError,
    OrderValidationError,
)
from services.storefront.app.services.merchant_directory import (
    CatalogDisabledError,
    MerchantNotFoundError,
    get_catalog_items,
    get_customer_profile,
    resolve_merchant_id,
)
from services.storefront.app.services.order_store_base import (
    OrderNotFoundError,
    OrderStore,
    OrderStoreError,
    StorePermissionError,
)
from services.storefront.app.services.order_store_factory import get_order_store
from services.storefront.app.services.payment_base import (
    PaymentDeclinedError,
    PaymentGatewayError,
)
from services.storefront.app.services.payment_factory import get_payment_gateway
from services.storefront.app.services.reconciliation import partition_orders
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()

_IN_FLIGHT = InFlightActions()

_EVENT_BY_ACTION = {
    OrderAction.AUTHORIZE: EventTypeV1.PAYMENT_AUTHORIZED,
    OrderAction.ABANDON: EventTypeV1.AUTHORIZATION_ABANDONED,
    OrderAction.APPROVE: EventTypeV1.ORDER_APPROVED,
    OrderAction.CANCEL: EventTypeV1.ORDER_CANCELLED,
}


def _raise_order_http_error(e: Exception) -> NoReturn:
    if isinstance(e, OrderValidationError):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, (OrderLifecycleError, ActionInFlightError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, PaymentDeclinedError):
        raise HTTPException(status_code=402, detail=str(e)) from e

    if isinstance(e, PaymentGatewayError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, (OrderNotFoundError, MerchantNotFoundError, CatalogDisabledError)):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, StorePermissionError):
        raise HTTPException(status_code=403, detail=f"Permission denied: {e}") from e

    if isinstance(e, OrderStoreError):
        raise HTTPException(status_code=503, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _store(db: Session) -> OrderStore:
    try:
        return get_order_store(db)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def _lifecycle(db: Session) -> tuple[OrderStore, OrderLifecycle]:
    store = _store(db)
    try:
        gateway = get_payment_gateway()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return store, OrderLifecycle(store, gateway)


def _owned_order(store: OrderStore, order_id: str, customer_id: str) -> Order:
    order = store.get_order(order_id)
    # Someone else's order is indistinguishable from a missing one.
    if order is None or order.customer_id != customer_id:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _cart_from_catalog(db: Session, merchant_id: str, payload: PlaceOrderRequest) -> Cart:
    items = get_catalog_items(db, merchant_id, [line.item_id for line in payload.lines])
    unknown = sorted({line.item_id for line in payload.lines} - set(items))
    if unknown:
        raise OrderValidationError(f"Items are not available in this catalog: {', '.join(unknown)}")

    cart = Cart()
    cart.allow_substitutions_for_all = payload.allow_substitutions_for_all
    for line in payload.lines:
        cart.add(items[line.item_id], quantity=line.quantity)
        if line.allow_substitution:
            cart.set_allow_substitution(line.item_id, True)
    return cart


@router.post("/v1/catalog/{identifier}/orders", response_model=Order)
def place_order(identifier: str, payload: PlaceOrderRequest, db: Session = Depends(get_db)) -> Order:
    try:
        merchant_id = resolve_merchant_id(db, identifier)
    except Exception as e:
        _raise_order_http_error(e)

    _store, lifecycle = _lifecycle(db)
    customer = get_customer_profile(db, merchant_id, payload.customer_id)

    try:
        cart = _cart_from_catalog(db, merchant_id, payload)
        with _IN_FLIGHT.guard("place_order", f"{merchant_id}:{payload.customer_id}"):
            order = lifecycle.place_order(cart, customer, merchant_id)
    except Exception as e:
        _raise_order_http_error(e)

    log_event(
        db,
        merchant_id=merchant_id,
        customer_id=payload.customer_id,
        entity_type=EntityTypeV1.ORDER,
        entity_id=order.id,
        event_type=EventTypeV1.ORDER_PLACED,
        event_payload={"order_number": order.order_number, "total_cents": order.total_cents},
    )
    db.commit()
    return order


@router.get("/v1/catalog/{identifier}/orders", response_model=CustomerOrdersView)
def list_customer_orders(
    identifier: str,
    customer_id: str,
    db: Session = Depends(get_db),
) -> CustomerOrdersView:
    try:
        merchant_id = resolve_merchant_id(db, identifier)
    except Exception as e:
        _raise_order_http_error(e)

    store = _store(db)
    try:
        orders = store.list_orders(merchant_id, customer_id, ACTIVE_STATUSES)
    except Exception as e:
        _raise_order_http_error(e)

    parts = partition_orders(orders)
    return CustomerOrdersView(
        pending=parts.pending,
        awaiting_approval=parts.awaiting_approval,
        approved=parts.approved,
    )


@router.get("/v1/orders/{order_id}", response_model=Order)
def get_order(order_id: str, customer_id: str, db: Session = Depends(get_db)) -> Order:
    store = _store(db)
    return _owned_order(store, order_id, customer_id)


@router.post("/v1/orders/{order_id}/authorize", response_model=AuthorizationOut)
def authorize_order(
    order_id: str,
    payload: OrderActionRequest,
    db: Session = Depends(get_db),
) -> AuthorizationOut:
    order = _run_action(db, OrderAction.AUTHORIZE, order_id, payload.customer_id)
    return AuthorizationOut(
        order=order,
        payment_intent_id=order.payment_intent_id or "",
        authorized_amount_cents=order.authorized_amount_cents or 0,
    )


@router.post("/v1/orders/{order_id}/abandon", response_model=Order)
def abandon_order(order_id: str, payload: OrderActionRequest, db: Session = Depends(get_db)) -> Order:
    return _run_action(db, OrderAction.ABANDON, order_id, payload.customer_id)


@router.post("/v1/orders/{order_id}/approve", response_model=Order)
def approve_order(order_id: str, payload: OrderActionRequest, db: Session = Depends(get_db)) -> Order:
    return _run_action(db, OrderAction.APPROVE, order_id, payload.customer_id)


@router.post("/v1/orders/{order_id}/cancel", response_model=Order)
def cancel_order(order_id: str, payload: OrderActionRequest, db: Session = Depends(get_db)) -> Order:
    return _run_action(db, OrderAction.CANCEL, order_id, payload.customer_id)


def _run_action(db: Session, action: OrderAction, order_id: str, customer_id: str) -> Order:
    store, lifecycle = _lifecycle(db)
    order = _owned_order(store, order_id, customer_id)

    steps = {
        OrderAction.AUTHORIZE: lifecycle.authorize_payment,
        OrderAction.ABANDON: lifecycle.abandon_authorization,
        OrderAction.APPROVE: lifecycle.approve_and_capture,
        OrderAction.CANCEL: lifecycle.cancel_order,
    }

    try:
        with _IN_FLIGHT.guard(action.value, order_id):
            updated = steps[action](order)
    except Exception as e:
        if not isinstance(e, ActionInFlightError):
            logger.warning("Order %s failed for order=%s: %s", action.value, order.order_number, e)
            log_event(
                db,
                merchant_id=order.merchant_id,
                customer_id=customer_id,
                entity_type=EntityTypeV1.ORDER,
                entity_id=order.id,
                event_type=EventTypeV1.ACTION_FAILED,
                event_payload={"action": action.value, "error": str(e)},
            )
            db.commit()
        _raise_order_http_error(e)

    log_event(
        db,
        merchant_id=updated.merchant_id,
        customer_id=customer_id,
        entity_type=EntityTypeV1.ORDER,
        entity_id=updated.id,
        event_type=_EVENT_BY_ACTION[action],
        event_payload={
            "status": updated.status.value,
            "payment_status": updated.payment_status.value,
            "total_cents": updated.total_cents,
            "authorized_amount_cents": updated.authorized_amount_cents,
        },
    )
    db.commit()
    return updated
