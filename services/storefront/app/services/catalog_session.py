from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from packages.shared.schemas.order_v1 import NotificationTypeV1
from services.storefront.app.models.order import CatalogItem, CustomerProfile, Order
from services.storefront.app.services.cart import Cart
from services.storefront.app.services.deep_link import DeepLinkActionResolver
from services.storefront.app.services.in_flight import InFlightActions
from services.storefront.app.services.lifecycle import OrderAction, OrderLifecycle
from services.storefront.app.services.merchant_directory import MerchantDirectoryError
from services.storefront.app.services.notification_surface import (
    NotificationSurface,
    PushChannel,
    PushMessage,
    Unsubscribe,
)
from services.storefront.app.services.notifications import (
    NotificationDispatcher,
    notification_type,
    order_tag,
)
from services.storefront.app.services.order_store_base import OrderStore
from services.storefront.app.services.payment_base import PaymentGateway
from services.storefront.app.services.reconciliation import (
    ObservedTransition,
    OrderPartitions,
    ReconciliationEngine,
)

logger = logging.getLogger(__name__)

PLACE_ORDER_KEY = "cart"

RegisterPushToken = Callable[[str, CustomerProfile, str], None]


@dataclass(slots=True)
class DialogState:
    approval_open: bool = False
    approval_open_count: int = 0
    completed_order_number: str | None = None


class CatalogSession:
    """One customer's browsing session on a merchant's public catalog.

    Owns the cart and the live order views, and routes order events to the
    notification dispatcher. All collaborators are injected.
    """

    def __init__(
        self,
        *,
        store: OrderStore,
        gateway: PaymentGateway,
        surface: NotificationSurface,
        push: PushChannel,
        resolve_identifier: Callable[[str], str],
        url: str,
        buffer_percent: float | None = None,
        page_visible: Callable[[], bool] | None = None,
        register_push_token: RegisterPushToken | None = None,
    ) -> None:
        self.url = url
        self.cart = Cart()
        self.dialogs = DialogState()
        self.merchant_id: str | None = None
        self.customer: CustomerProfile | None = None
        self.not_found: str | None = None

        self._store = store
        self._push = push
        self._resolve_identifier = resolve_identifier
        self._page_visible = page_visible or (lambda: True)
        self._push_unsubscribe: Unsubscribe | None = None
        self._register_push_token = register_push_token
        self._push_token_registered = False

        self.lifecycle = OrderLifecycle(store, gateway, buffer_percent=buffer_percent)
        self.in_flight = InFlightActions()
        self.dispatcher = NotificationDispatcher(surface)
        self.resolver = DeepLinkActionResolver(
            open_dialog=self._open_approval_dialog,
            replace_url=self._replace_url,
        )
        self.reconciliation = ReconciliationEngine(
            store,
            on_transition=self._on_transition,
            on_partitions=self._on_partitions,
        )

    @property
    def views(self) -> OrderPartitions:
        return self.reconciliation.partitions

    def open(self, identifier: str) -> None:
        self.resolver.on_url(self.url)
        try:
            merchant_id = self._resolve_identifier(identifier)
        except MerchantDirectoryError as e:
            logger.info("Catalog %r unavailable: %s", identifier, e)
            self.not_found = str(e)
            return

        self.merchant_id = merchant_id
        self.resolver.on_merchant_resolved(merchant_id)
        self._maybe_start()

    def sign_in(self, customer: CustomerProfile) -> None:
        self.customer = customer
        self.resolver.on_auth(customer.id)
        self._maybe_start()

    def sign_out(self) -> None:
        self.customer = None
        self.resolver.on_auth(None)
        self._teardown()

    def close(self) -> None:
        self._teardown()

    def add_to_cart(self, item: CatalogItem) -> None:
        self.cart.add(item)

    def update_cart_quantity(self, item_id: str, delta: int) -> None:
        self.cart.update_quantity(item_id, delta)

    def remove_from_cart(self, item_id: str) -> None:
        self.cart.remove(item_id)

    def place_order(self) -> Order:
        if self.merchant_id is None:
            raise RuntimeError("Catalog is not open")
        with self.in_flight.guard("place_order", PLACE_ORDER_KEY):
            return self.lifecycle.place_order(self.cart, self.customer, self.merchant_id)

    def authorize(self, order: Order) -> Order:
        with self.in_flight.guard(OrderAction.AUTHORIZE.value, order.id):
            return self.lifecycle.authorize_payment(order, self.cart)

    def abandon(self, order: Order) -> Order:
        with self.in_flight.guard(OrderAction.ABANDON.value, order.id):
            return self.lifecycle.abandon_authorization(order)

    def approve(self, order: Order) -> Order:
        with self.in_flight.guard(OrderAction.APPROVE.value, order.id):
            updated = self.lifecycle.approve_and_capture(order)
        self.dialogs.approval_open = False
        self.dispatcher.acknowledge(order_tag(order.order_number))
        return updated

    def cancel(self, order: Order) -> Order:
        with self.in_flight.guard(OrderAction.CANCEL.value, order.id):
            return self.lifecycle.cancel_order(order)

    def dismiss_completed_dialog(self) -> None:
        if self.dialogs.completed_order_number:
            self.dispatcher.acknowledge(order_tag(self.dialogs.completed_order_number))
        self.dialogs.completed_order_number = None

    def _maybe_start(self) -> None:
        if self.merchant_id is None or self.customer is None:
            return
        self.reconciliation.start(self.merchant_id, self.customer.id)
        if self._push_unsubscribe is None:
            self._push_unsubscribe = self._push.on_foreground_message(self._on_foreground_message)
        if not self._push_token_registered:
            self._push_token_registered = True
            self._register_device()

    def _teardown(self) -> None:
        if self._push_unsubscribe is not None:
            self._push_unsubscribe()
            self._push_unsubscribe = None
        self.reconciliation.stop()
        self.dispatcher.retain(set())
        self._push_token_registered = False

    def _register_device(self) -> None:
        if self._register_push_token is None or self.customer is None or self.merchant_id is None:
            return
        try:
            token = self._push.request_push_token()
            if not token:
                logger.info("No push token for customer=%s", self.customer.id)
                return
            self._register_push_token(self.merchant_id, self.customer, token)
        except Exception as e:
            logger.warning(
                "Push token registration failed for customer=%s: %s", self.customer.id, e
            )

    def _on_partitions(self, partitions: OrderPartitions) -> None:
        # Alerts for orders that left every view are done; keep the completed one on screen.
        views = (partitions.pending, partitions.awaiting_approval, partitions.approved)
        live = {order_tag(o.order_number) for view in views for o in view}
        if self.dialogs.completed_order_number:
            live.add(order_tag(self.dialogs.completed_order_number))
        self.dispatcher.retain(live)
        self.resolver.on_awaiting_orders(partitions.awaiting_approval)

    def _on_transition(self, transition: ObservedTransition) -> None:
        self.dispatcher.notify_transition(transition, visible=self._page_visible())
        if transition.type == NotificationTypeV1.ORDER_COMPLETED:
            self.dialogs.completed_order_number = transition.order.order_number

    def _on_foreground_message(self, message: PushMessage) -> None:
        notification = self.dispatcher.handle_push(message, visible=True)
        data = notification.data if notification else dict(message.get("data") or {})
        if notification_type(data) == NotificationTypeV1.ORDER_AWAITING_APPROVAL:
            # The order may not have synced yet; the resolver waits for it.
            self.resolver.request()

    def _open_approval_dialog(self) -> None:
        self.dialogs.approval_open = True
        self.dialogs.approval_open_count += 1

    def _replace_url(self, url: str) -> None:
        self.url = url
