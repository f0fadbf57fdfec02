from __future__ import annotations

import pytest
from packages.shared.schemas.order_v1 import OrderStatusV1, PaymentStatusV1
from services.storefront.app.models.order import CatalogItem, CustomerProfile, Order
from services.storefront.app.services.cart import Cart
from services.storefront.app.services.lifecycle import (
    ABANDONED_REASON,
    CUSTOMER_CANCEL_REASON,
    CaptureExceedsAuthorizationError,
    OrderAction,
    OrderLifecycle,
    OrderStateError,
    OrderValidationError,
    can_transition,
)
from services.storefront.app.services.order_store_memory import InMemoryOrderStore
from services.storefront.app.services.payment_base import (
    HoldAction,
    PaymentDeclinedError,
    PaymentGatewayError,
)
from services.storefront.app.services.payment_mock import MockPaymentGateway

from conftest import MERCHANT_ID, full_address


class _UntouchableGateway:
    """Fails the test if any gateway call is made."""

    name = "UNTOUCHABLE"

    def __getattr__(self, item: str) -> object:
        raise AssertionError(f"unexpected gateway call: {item}")


class _FlakyReleaseGateway(MockPaymentGateway):
    def capture_or_cancel(self, order_id, merchant_id, *, action, amount_cents=None):
        if action == HoldAction.CANCEL:
            raise PaymentGatewayError("network down")
        return super().capture_or_cancel(
            order_id, merchant_id, action=action, amount_cents=amount_cents
        )


class _DeclineOnceGateway(MockPaymentGateway):
    def __init__(self) -> None:
        super().__init__()
        self.declines_left = 1
        self.released: list[str] = []

    def confirm_client_side(self, client_secret: str) -> None:
        if self.declines_left:
            self.declines_left -= 1
            raise PaymentDeclinedError("Your card was declined.")
        super().confirm_client_side(client_secret)

    def capture_or_cancel(self, order_id, merchant_id, *, action, amount_cents=None):
        result = super().capture_or_cancel(
            order_id, merchant_id, action=action, amount_cents=amount_cents
        )
        if action == HoldAction.CANCEL:
            self.released.append(result.payment_intent_id)
        return result


def _cart(item: CatalogItem, quantity: int = 3) -> Cart:
    cart = Cart()
    cart.add(item, quantity=quantity)
    return cart


def _placed(lifecycle: OrderLifecycle, customer: CustomerProfile, item: CatalogItem) -> Order:
    return lifecycle.place_order(_cart(item), customer, MERCHANT_ID)


def _authorized(lifecycle: OrderLifecycle, customer: CustomerProfile, item: CatalogItem) -> Order:
    return lifecycle.authorize_payment(_placed(lifecycle, customer, item))


def test_place_order_snapshots_cart(
    lifecycle: OrderLifecycle,
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    cart = _cart(apple)
    cart.allow_substitutions_for_all = True

    order = lifecycle.place_order(cart, customer, MERCHANT_ID)

    assert order.status == OrderStatusV1.PENDING_PAYMENT
    assert order.payment_status == PaymentStatusV1.UNPAID
    assert order.total_cents == 750
    assert order.subtotal_cents == 750
    assert order.items[0].quantity == 3
    assert order.items[0].allow_substitution is True
    assert order.order_number.startswith("ONL-")
    assert store.get_order(order.id) == order
    # Placing alone does not empty the cart; authorization does.
    assert len(cart) == 1


@pytest.mark.parametrize(
    ("cart_qty", "customer_override", "message"),
    [
        (0, None, "Cart is empty"),
        (1, "unregistered", "not registered"),
        (1, "no_address", "address is required"),
        (1, "no_city", "city"),
    ],
)
def test_place_order_rejects_bad_checkout_without_writing(
    lifecycle: OrderLifecycle,
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
    cart_qty: int,
    customer_override: str | None,
    message: str,
) -> None:
    cart = Cart()
    if cart_qty:
        cart.add(apple, quantity=cart_qty)

    who: CustomerProfile | None = customer
    if customer_override == "unregistered":
        who = None
    elif customer_override == "no_address":
        who = customer.model_copy(update={"address": None})
    elif customer_override == "no_city":
        who = customer.model_copy(update={"address": full_address(city="  ")})

    with pytest.raises(OrderValidationError, match=message):
        lifecycle.place_order(cart, who, MERCHANT_ID)

    assert store.list_orders(MERCHANT_ID, customer.id, OrderStatusV1) == []


def test_authorize_holds_buffered_total_and_clears_cart(
    lifecycle: OrderLifecycle,
    gateway: MockPaymentGateway,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    cart = _cart(apple)
    order = lifecycle.place_order(cart, customer, MERCHANT_ID)

    updated = lifecycle.authorize_payment(order, cart)

    assert updated.status == OrderStatusV1.PENDING
    assert updated.payment_status == PaymentStatusV1.AUTHORIZED
    assert updated.authorized_amount_cents == 825
    assert updated.payment_intent_id
    assert updated.authorized_at is not None
    assert not cart
    assert gateway.hold_state(order.id) == "authorized"


def test_declined_authorization_keeps_order_and_then_abandons(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    gateway = MockPaymentGateway(declined_emails={customer.email})
    lifecycle = OrderLifecycle(store, gateway, buffer_percent=0.10)
    cart = _cart(apple)
    order = lifecycle.place_order(cart, customer, MERCHANT_ID)

    with pytest.raises(PaymentDeclinedError):
        lifecycle.authorize_payment(order, cart)

    current = store.get_order(order.id)
    assert current is not None
    assert current.status == OrderStatusV1.PENDING_PAYMENT
    assert current.payment_intent_id
    assert len(cart) == 1

    abandoned = lifecycle.abandon_authorization(order)
    assert abandoned.status == OrderStatusV1.CANCELLED
    assert abandoned.payment_status == PaymentStatusV1.RELEASED
    assert abandoned.cancellation_reason == ABANDONED_REASON
    assert gateway.hold_state(order.id) == "released"


def test_abandon_without_intent_only_cancels(
    lifecycle: OrderLifecycle,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    order = _placed(lifecycle, customer, apple)

    abandoned = lifecycle.abandon_authorization(order)

    assert abandoned.status == OrderStatusV1.CANCELLED
    assert abandoned.payment_status == PaymentStatusV1.UNPAID


def test_abandon_release_failure_is_best_effort(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    gateway = _FlakyReleaseGateway(declined_emails={customer.email})
    lifecycle = OrderLifecycle(store, gateway, buffer_percent=0.10)
    order = _placed(lifecycle, customer, apple)
    with pytest.raises(PaymentDeclinedError):
        lifecycle.authorize_payment(order)

    abandoned = lifecycle.abandon_authorization(order)

    assert abandoned.status == OrderStatusV1.CANCELLED
    assert abandoned.payment_status == PaymentStatusV1.RELEASE_FAILED


def test_retry_after_decline_releases_earlier_intent(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    gateway = _DeclineOnceGateway()
    lifecycle = OrderLifecycle(store, gateway, buffer_percent=0.10)
    order = _placed(lifecycle, customer, apple)

    with pytest.raises(PaymentDeclinedError):
        lifecycle.authorize_payment(order)
    first = store.get_order(order.id)
    assert first is not None
    assert first.payment_intent_id

    updated = lifecycle.authorize_payment(order)

    assert gateway.released == [first.payment_intent_id]
    assert updated.status == OrderStatusV1.PENDING
    assert updated.payment_intent_id != first.payment_intent_id
    assert gateway.hold_state(order.id) == "authorized"


def test_approve_captures_substituted_total_within_hold(
    lifecycle: OrderLifecycle,
    store: InMemoryOrderStore,
    gateway: MockPaymentGateway,
    customer: CustomerProfile,
) -> None:
    steak = CatalogItem(id="steak", name="Steak", unit_price_cents=1000)
    order = lifecycle.authorize_payment(lifecycle.place_order(_cart(steak, 2), customer, MERCHANT_ID))
    assert order.authorized_amount_cents == 2200

    # Merchant substitutes and asks for approval.
    store.patch_order(
        order.id,
        {
            "status": OrderStatusV1.AWAITING_APPROVAL,
            "original_total_cents": 2000,
            "total_cents": 2100,
        },
    )

    approved = lifecycle.approve_and_capture(order)

    assert approved.status == OrderStatusV1.APPROVED
    assert approved.payment_status == PaymentStatusV1.CAPTURED
    assert approved.paid_at is not None
    assert gateway.captured_amount(order.id) == 2100


def test_approve_above_hold_is_refused_without_capture(
    lifecycle: OrderLifecycle,
    store: InMemoryOrderStore,
    gateway: MockPaymentGateway,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    order = _authorized(lifecycle, customer, apple)
    store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL, "total_cents": 900})

    with pytest.raises(CaptureExceedsAuthorizationError) as exc:
        lifecycle.approve_and_capture(order)

    assert exc.value.authorized_amount_cents == 825
    current = store.get_order(order.id)
    assert current is not None
    assert current.status == OrderStatusV1.AWAITING_APPROVAL
    assert gateway.hold_state(order.id) == "authorized"


@pytest.mark.parametrize(
    ("status", "action"),
    [
        (OrderStatusV1.PENDING, OrderAction.AUTHORIZE),
        (OrderStatusV1.PENDING, OrderAction.ABANDON),
        (OrderStatusV1.PENDING, OrderAction.APPROVE),
        (OrderStatusV1.AWAITING_APPROVAL, OrderAction.CANCEL),
        (OrderStatusV1.APPROVED, OrderAction.CANCEL),
        (OrderStatusV1.COMPLETED, OrderAction.APPROVE),
        (OrderStatusV1.CANCELLED, OrderAction.CANCEL),
    ],
)
def test_actions_from_wrong_state_never_reach_gateway(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
    status: OrderStatusV1,
    action: OrderAction,
) -> None:
    order = OrderLifecycle(store, MockPaymentGateway()).place_order(_cart(apple), customer, MERCHANT_ID)
    store.patch_order(order.id, {"status": status})

    lifecycle = OrderLifecycle(store, _UntouchableGateway(), buffer_percent=0.10)
    step = {
        OrderAction.AUTHORIZE: lifecycle.authorize_payment,
        OrderAction.ABANDON: lifecycle.abandon_authorization,
        OrderAction.APPROVE: lifecycle.approve_and_capture,
        OrderAction.CANCEL: lifecycle.cancel_order,
    }[action]

    with pytest.raises(OrderStateError) as exc:
        step(order)

    assert exc.value.status == status
    assert exc.value.action == action
    current = store.get_order(order.id)
    assert current is not None
    assert current.status == status


def test_cancel_pending_releases_hold(
    lifecycle: OrderLifecycle,
    gateway: MockPaymentGateway,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    order = _authorized(lifecycle, customer, apple)

    cancelled = lifecycle.cancel_order(order)

    assert cancelled.status == OrderStatusV1.CANCELLED
    assert cancelled.payment_status == PaymentStatusV1.RELEASED
    assert cancelled.cancellation_reason == CUSTOMER_CANCEL_REASON
    assert cancelled.cancelled_at is not None
    assert gateway.hold_state(order.id) == "released"


def test_cancel_tolerates_hold_already_released(
    lifecycle: OrderLifecycle,
    gateway: MockPaymentGateway,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    order = _authorized(lifecycle, customer, apple)
    gateway.capture_or_cancel(order.id, MERCHANT_ID, action=HoldAction.CANCEL)

    cancelled = lifecycle.cancel_order(order)

    assert cancelled.status == OrderStatusV1.CANCELLED
    assert cancelled.payment_status == PaymentStatusV1.RELEASED


def test_cancel_release_failure_still_cancels(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    lifecycle = OrderLifecycle(store, _FlakyReleaseGateway(), buffer_percent=0.10)
    order = _authorized(lifecycle, customer, apple)

    cancelled = lifecycle.cancel_order(order)

    assert cancelled.status == OrderStatusV1.CANCELLED
    assert cancelled.payment_status == PaymentStatusV1.RELEASE_FAILED
    assert cancelled.cancellation_reason == CUSTOMER_CANCEL_REASON
    current = store.get_order(order.id)
    assert current is not None
    assert current.status == OrderStatusV1.CANCELLED


def test_stale_order_copy_is_reread_from_store(
    lifecycle: OrderLifecycle,
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    stale = _authorized(lifecycle, customer, apple)
    store.patch_order(stale.id, {"status": OrderStatusV1.AWAITING_APPROVAL})

    assert stale.status == OrderStatusV1.PENDING
    approved = lifecycle.approve_and_capture(stale)
    assert approved.status == OrderStatusV1.APPROVED


@pytest.mark.parametrize(
    ("src", "dst", "allowed"),
    [
        (OrderStatusV1.PENDING_PAYMENT, OrderStatusV1.PENDING, True),
        (OrderStatusV1.PENDING_PAYMENT, OrderStatusV1.CANCELLED, True),
        (OrderStatusV1.PENDING, OrderStatusV1.AWAITING_APPROVAL, True),
        (OrderStatusV1.AWAITING_APPROVAL, OrderStatusV1.APPROVED, True),
        (OrderStatusV1.APPROVED, OrderStatusV1.COMPLETED, True),
        (OrderStatusV1.PENDING, OrderStatusV1.APPROVED, False),
        (OrderStatusV1.APPROVED, OrderStatusV1.CANCELLED, False),
        (OrderStatusV1.COMPLETED, OrderStatusV1.PENDING, False),
        (OrderStatusV1.CANCELLED, OrderStatusV1.PENDING, False),
    ],
)
def test_can_transition(src: OrderStatusV1, dst: OrderStatusV1, allowed: bool) -> None:
    assert can_transition(src, dst) is allowed
