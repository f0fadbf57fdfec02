"""Customer-side order lifecycle.

Customer actions and the states they may start from:

    authorize  pending_payment              -> pending
    abandon    pending_payment              -> cancelled
    approve    awaiting_approval            -> approved
    cancel     pending_payment | pending    -> cancelled

The merchant actor moves orders into awaiting_approval, completed and (rarely)
cancelled. Those transitions are observed here, never driven.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from packages.shared.schemas.order_v1 import OrderStatusV1, PaymentStatusV1
from services.storefront.app.models.order import CustomerProfile, Order, OrderDraft, OrderItem
from services.storefront.app.services.cart import Cart
from services.storefront.app.services.order_number import generate_order_number
from services.storefront.app.services.order_store_base import OrderNotFoundError, OrderStore
from services.storefront.app.services.payment_base import (
    HoldAction,
    PaymentAlreadyReleasedError,
    PaymentGateway,
    PaymentGatewayError,
    default_buffer_percent,
)

logger = logging.getLogger(__name__)

ABANDONED_REASON = "payment not completed"
CUSTOMER_CANCEL_REASON = "cancelled by customer"


class OrderAction(str, Enum):
    AUTHORIZE = "authorize"
    ABANDON = "abandon"
    APPROVE = "approve"
    CANCEL = "cancel"


CUSTOMER_TRANSITIONS: dict[OrderAction, tuple[frozenset[OrderStatusV1], OrderStatusV1]] = {
    OrderAction.AUTHORIZE: (
        frozenset({OrderStatusV1.PENDING_PAYMENT}),
        OrderStatusV1.PENDING,
    ),
    OrderAction.ABANDON: (
        frozenset({OrderStatusV1.PENDING_PAYMENT}),
        OrderStatusV1.CANCELLED,
    ),
    OrderAction.APPROVE: (
        frozenset({OrderStatusV1.AWAITING_APPROVAL}),
        OrderStatusV1.APPROVED,
    ),
    OrderAction.CANCEL: (
        frozenset({OrderStatusV1.PENDING_PAYMENT, OrderStatusV1.PENDING}),
        OrderStatusV1.CANCELLED,
    ),
}

MERCHANT_TRANSITIONS: frozenset[tuple[OrderStatusV1, OrderStatusV1]] = frozenset(
    {
        (OrderStatusV1.PENDING, OrderStatusV1.AWAITING_APPROVAL),
        (OrderStatusV1.PENDING, OrderStatusV1.CANCELLED),
        (OrderStatusV1.AWAITING_APPROVAL, OrderStatusV1.CANCELLED),
        (OrderStatusV1.APPROVED, OrderStatusV1.COMPLETED),
    }
)


def can_transition(src: OrderStatusV1, dst: OrderStatusV1) -> bool:
    if (src, dst) in MERCHANT_TRANSITIONS:
        return True
    return any(src in sources and dst == target for sources, target in CUSTOMER_TRANSITIONS.values())


class OrderLifecycleError(Exception):
    """Base class for lifecycle errors."""


class OrderValidationError(OrderLifecycleError):
    """Checkout input is not acceptable. Never reaches the store."""


class OrderStateError(OrderLifecycleError):
    def __init__(self, order: Order, action: OrderAction) -> None:
        allowed = ", ".join(sorted(s.value for s in CUSTOMER_TRANSITIONS[action][0]))
        super().__init__(
            f"Cannot {action.value} order {order.order_number}: status is "
            f"{order.status.value}, expected {allowed}"
        )
        self.order_id = order.id
        self.status = order.status
        self.action = action


class CaptureExceedsAuthorizationError(OrderLifecycleError):
    def __init__(self, order: Order) -> None:
        super().__init__(
            f"Order {order.order_number} total {order.total_cents} exceeds the authorized "
            f"hold {order.authorized_amount_cents}; it cannot be captured as is"
        )
        self.order_id = order.id
        self.total_cents = order.total_cents
        self.authorized_amount_cents = order.authorized_amount_cents


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderLifecycle:
    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway,
        *,
        buffer_percent: float | None = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self.buffer_percent = default_buffer_percent() if buffer_percent is None else buffer_percent

    def place_order(
        self,
        cart: Cart,
        customer: CustomerProfile | None,
        merchant_id: str,
    ) -> Order:
        if not cart:
            raise OrderValidationError("Cart is empty")
        if customer is None:
            raise OrderValidationError("Customer is not registered with this store")
        if customer.address is None:
            raise OrderValidationError("A delivery address is required")
        missing = customer.address.missing_fields()
        if missing:
            raise OrderValidationError(f"Delivery address is incomplete: {', '.join(missing)}")

        items = [
            OrderItem(
                item_id=line.item.id,
                name=line.item.name,
                unit_price_cents=line.item.unit_price_cents,
                quantity=line.quantity,
                line_total_cents=line.line_total_cents,
                category=line.item.category,
                image_url=line.item.image_url,
                allow_substitution=line.allow_substitution or cart.allow_substitutions_for_all,
            )
            for line in cart.lines
        ]
        subtotal = sum(i.line_total_cents for i in items)

        draft = OrderDraft(
            merchant_id=merchant_id,
            order_number=generate_order_number(),
            customer_id=customer.id,
            customer_email=customer.email,
            customer_name=customer.name or "Unknown",
            shipping_address=customer.address,
            items=items,
            subtotal_cents=subtotal,
            total_cents=subtotal,
            created_at=_now(),
        )
        order_id = self._store.create_order(draft)
        logger.info("Order placed id=%s number=%s total=%s", order_id, draft.order_number, subtotal)
        return self._load(order_id)

    def authorize_payment(self, order: Order, cart: Cart | None = None) -> Order:
        current = self._require(order, OrderAction.AUTHORIZE)

        if current.payment_intent_id:
            # A failed earlier attempt left an intent behind; it must not outlive the retry.
            self._release_previous_intent(current)

        auth = self._gateway.create_authorization(
            current.id,
            current.total_cents,
            self.buffer_percent,
            current.customer_email,
        )

        # Recorded before confirmation so an abandoned checkout can release it.
        self._store.patch_order(current.id, {"payment_intent_id": auth.payment_intent_id})

        self._gateway.confirm_client_side(auth.client_secret)

        updated = self._store.patch_order(
            current.id,
            {
                "status": OrderStatusV1.PENDING,
                "payment_status": PaymentStatusV1.AUTHORIZED,
                "authorized_amount_cents": auth.authorized_amount_cents,
                "authorized_at": _now(),
            },
        )
        if cart is not None:
            cart.clear()

        logger.info(
            "Payment authorized order=%s amount=%s intent=%s",
            current.order_number,
            auth.authorized_amount_cents,
            auth.payment_intent_id,
        )
        return updated

    def abandon_authorization(self, order: Order) -> Order:
        current = self._require(order, OrderAction.ABANDON)

        fields: dict = {
            "status": OrderStatusV1.CANCELLED,
            "cancelled_at": _now(),
            "cancellation_reason": ABANDONED_REASON,
        }

        if current.payment_intent_id:
            try:
                self._gateway.capture_or_cancel(
                    current.id,
                    current.merchant_id,
                    action=HoldAction.CANCEL,
                )
                fields["payment_status"] = PaymentStatusV1.RELEASED
            except PaymentAlreadyReleasedError:
                fields["payment_status"] = PaymentStatusV1.RELEASED
            except PaymentGatewayError as e:
                # Compensation is best-effort; the hold is left for server-side cleanup.
                logger.warning(
                    "Hold release failed for abandoned order=%s: %s", current.order_number, e
                )
                fields["payment_status"] = PaymentStatusV1.RELEASE_FAILED

        updated = self._store.patch_order(current.id, fields)
        logger.info("Authorization abandoned order=%s", current.order_number)
        return updated

    def approve_and_capture(self, order: Order) -> Order:
        current = self._require(order, OrderAction.APPROVE)

        # TODO: re-authorize or charge the difference once a policy exists for totals above the hold.
        if (
            current.authorized_amount_cents is not None
            and current.total_cents > current.authorized_amount_cents
        ):
            raise CaptureExceedsAuthorizationError(current)

        self._gateway.capture_or_cancel(
            current.id,
            current.merchant_id,
            action=HoldAction.CAPTURE,
            amount_cents=current.total_cents,
        )

        updated = self._store.patch_order(
            current.id,
            {
                "status": OrderStatusV1.APPROVED,
                "payment_status": PaymentStatusV1.CAPTURED,
                "paid_at": _now(),
            },
        )
        logger.info("Order approved order=%s captured=%s", current.order_number, current.total_cents)
        return updated

    def cancel_order(self, order: Order) -> Order:
        current = self._require(order, OrderAction.CANCEL)

        fields: dict = {
            "status": OrderStatusV1.CANCELLED,
            "cancelled_at": _now(),
            "cancellation_reason": CUSTOMER_CANCEL_REASON,
        }

        if current.payment_intent_id:
            try:
                self._gateway.capture_or_cancel(
                    current.id,
                    current.merchant_id,
                    action=HoldAction.CANCEL,
                )
            except PaymentAlreadyReleasedError:
                logger.info("Hold already released for order=%s", current.order_number)
                fields["payment_status"] = PaymentStatusV1.RELEASED
            except PaymentGatewayError as e:
                # The order is cancelled regardless; the hold is left for server-side cleanup.
                logger.warning(
                    "Hold release failed for cancelled order=%s: %s", current.order_number, e
                )
                fields["payment_status"] = PaymentStatusV1.RELEASE_FAILED
            else:
                fields["payment_status"] = PaymentStatusV1.RELEASED

        updated = self._store.patch_order(current.id, fields)
        logger.info("Order cancelled order=%s", current.order_number)
        return updated

    def _release_previous_intent(self, order: Order) -> None:
        try:
            self._gateway.capture_or_cancel(
                order.id,
                order.merchant_id,
                action=HoldAction.CANCEL,
            )
        except PaymentAlreadyReleasedError:
            pass
        logger.info(
            "Released earlier intent=%s before re-authorizing order=%s",
            order.payment_intent_id,
            order.order_number,
        )
        self._store.patch_order(order.id, {"payment_intent_id": None})

    def _load(self, order_id: str) -> Order:
        order = self._store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _require(self, order: Order, action: OrderAction) -> Order:
        # The caller's copy may be stale; the store is authoritative.
        current = self._load(order.id)
        sources, _target = CUSTOMER_TRANSITIONS[action]
        if current.status not in sources:
            raise OrderStateError(current, action)
        return current
