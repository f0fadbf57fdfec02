from __future__ import annotations

import pytest
from packages.shared.schemas.order_v1 import OrderStatusV1
from services.storefront.app.models.order import CatalogItem, CustomerProfile
from services.storefront.app.services.catalog_session import CatalogSession
from services.storefront.app.services.in_flight import ActionInFlightError
from services.storefront.app.services.merchant_directory import (
    CatalogDisabledError,
    MerchantNotFoundError,
)
from services.storefront.app.services.notification_surface import InMemoryNotificationSurface
from services.storefront.app.services.order_store_memory import InMemoryOrderStore
from services.storefront.app.services.payment_mock import MockPaymentGateway

from conftest import MERCHANT_ID, MERCHANT_SLUG


def _resolve(identifier: str) -> str:
    if identifier in {MERCHANT_SLUG, MERCHANT_ID}:
        return MERCHANT_ID
    if identifier == "private-shop":
        raise CatalogDisabledError("m-private")
    raise MerchantNotFoundError(identifier)


def _session(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    *,
    url: str = f"/catalog/{MERCHANT_SLUG}",
    visible: bool = True,
    register_push_token=None,
) -> CatalogSession:
    return CatalogSession(
        store=store,
        gateway=MockPaymentGateway(),
        surface=surface,
        push=surface,
        resolve_identifier=_resolve,
        url=url,
        buffer_percent=0.10,
        page_visible=lambda: visible,
        register_push_token=register_push_token,
    )


@pytest.fixture()
def surface() -> InMemoryNotificationSurface:
    return InMemoryNotificationSurface()


def _checkout(session: CatalogSession, item: CatalogItem, quantity: int = 1):
    session.add_to_cart(item)
    if quantity > 1:
        session.update_cart_quantity(item.id, quantity - 1)
    return session.authorize(session.place_order())


def test_checkout_shows_order_as_pending_and_cancel_removes_it(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)

    order = _checkout(session, apple, quantity=3)

    assert order.authorized_amount_cents == 825
    assert not session.cart
    assert [o.id for o in session.views.pending] == [order.id]

    session.cancel(order)

    assert session.views.pending == []
    assert surface.history == []


def test_awaiting_approval_alerts_and_deep_link_opens_dialog_once(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface, url=f"/catalog/{MERCHANT_SLUG}?action=approve")
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    order = _checkout(session, apple)
    assert session.dialogs.approval_open_count == 0

    store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL})

    tag = f"order-{order.order_number}"
    assert tag in surface.in_page
    assert tag in surface.system
    assert session.dialogs.approval_open
    assert session.dialogs.approval_open_count == 1
    assert session.url == f"/catalog/{MERCHANT_SLUG}"

    approved = session.approve(order)
    assert approved.status == OrderStatusV1.APPROVED
    assert not session.dialogs.approval_open
    assert [o.id for o in session.views.approved] == [order.id]

    store.patch_order(order.id, {"status": OrderStatusV1.COMPLETED})
    assert session.dialogs.completed_order_number == order.order_number
    assert session.dialogs.approval_open_count == 1

    session.dismiss_completed_dialog()
    assert session.dialogs.completed_order_number is None


def test_hidden_page_only_raises_system_alert(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface, visible=False)
    session.open(MERCHANT_ID)
    session.sign_in(customer)
    order = _checkout(session, apple)

    store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL})

    assert surface.in_page == {}
    assert f"order-{order.order_number}" in surface.system


def test_foreground_push_requests_approval_dialog(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    order = _checkout(session, apple)
    store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL})
    assert session.dialogs.approval_open_count == 0

    delivered = surface.deliver_foreground(
        {
            "notification": {"title": "Order Ready for Approval!"},
            "data": {"type": "order_awaiting_approval", "orderNumber": order.order_number},
        }
    )

    assert delivered == 1
    assert session.dialogs.approval_open_count == 1
    # The push reuses the order's tag, so it replaced the transition alert.
    assert list(surface.in_page) == [f"order-{order.order_number}"]


def test_foreground_push_before_order_syncs_waits_for_it(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    order = _checkout(session, apple)

    surface.deliver_foreground({"data": {"type": "order_awaiting_approval"}})
    assert session.dialogs.approval_open_count == 0

    store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL})
    assert session.dialogs.approval_open_count == 1


@pytest.mark.parametrize("identifier", ["no-such-shop", "private-shop"])
def test_unavailable_catalog_never_subscribes(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    identifier: str,
) -> None:
    session = _session(store, surface)
    session.open(identifier)
    session.sign_in(customer)

    assert session.not_found
    assert store.listener_count == 0
    with pytest.raises(RuntimeError, match="not open"):
        session.place_order()


def test_sign_out_and_close_release_subscriptions(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    assert store.listener_count == 1

    session.sign_out()
    assert store.listener_count == 0
    assert surface.deliver_foreground({"data": {}}) == 0

    session.sign_in(customer)
    assert store.listener_count == 1
    session.close()
    assert store.listener_count == 0


def test_duplicate_action_is_rejected_while_in_flight(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    order = _checkout(session, apple)

    with session.in_flight.guard("cancel", order.id):
        with pytest.raises(ActionInFlightError):
            session.cancel(order)

    assert session.cancel(order).status == OrderStatusV1.CANCELLED


def test_sign_in_registers_push_token_once_catalog_is_known(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
) -> None:
    registered: list[tuple[str, str, str]] = []
    surface = InMemoryNotificationSurface(push_token="device-token")
    session = _session(
        store,
        surface,
        register_push_token=lambda merchant_id, who, token: registered.append(
            (merchant_id, who.id, token)
        ),
    )

    session.sign_in(customer)
    assert registered == []

    session.open(MERCHANT_SLUG)
    assert registered == [(MERCHANT_ID, customer.id, "device-token")]

    session.sign_out()
    session.sign_in(customer)
    assert len(registered) == 2


@pytest.mark.parametrize(
    ("permission", "token"),
    [("denied", "device-token"), ("granted", None)],
)
def test_no_push_token_skips_registration(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    permission: str,
    token: str | None,
) -> None:
    registered: list[str] = []
    surface = InMemoryNotificationSurface(permission=permission, push_token=token)
    session = _session(store, surface, register_push_token=lambda m, c, t: registered.append(t))

    session.open(MERCHANT_SLUG)
    session.sign_in(customer)

    assert registered == []
    assert store.listener_count == 1


def test_push_token_registration_failure_does_not_block_sign_in(
    store: InMemoryOrderStore,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    def _boom(merchant_id: str, who: CustomerProfile, token: str) -> None:
        raise RuntimeError("token store offline")

    surface = InMemoryNotificationSurface(push_token="device-token")
    session = _session(store, surface, register_push_token=_boom)

    session.open(MERCHANT_SLUG)
    session.sign_in(customer)

    assert session.customer == customer
    assert store.listener_count == 1
    assert _checkout(session, apple).status == OrderStatusV1.PENDING


def test_alert_tags_are_forgotten_once_orders_leave_the_views(
    store: InMemoryOrderStore,
    surface: InMemoryNotificationSurface,
    customer: CustomerProfile,
    apple: CatalogItem,
) -> None:
    session = _session(store, surface)
    session.open(MERCHANT_SLUG)
    session.sign_in(customer)
    first = _checkout(session, apple)
    second = _checkout(session, apple)

    for order in (first, second):
        store.patch_order(order.id, {"status": OrderStatusV1.AWAITING_APPROVAL})
    assert session.dispatcher.active_tags == {
        f"order-{first.order_number}",
        f"order-{second.order_number}",
    }

    store.patch_order(first.id, {"status": OrderStatusV1.CANCELLED})
    assert session.dispatcher.active_tags == {f"order-{second.order_number}"}

    session.approve(second)
    assert session.dispatcher.active_tags == set()

    store.patch_order(second.id, {"status": OrderStatusV1.COMPLETED})
    assert session.dispatcher.active_tags == {f"order-{second.order_number}"}

    session.dismiss_completed_dialog()
    assert session.dispatcher.active_tags == set()

    session.close()
    assert session.dispatcher.active_tags == set()
