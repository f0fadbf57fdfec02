"""Local alert policy for order events.

Alerts are deduplicated by tag: `order-<order number>` for order events and a
static fallback for anything else. A tag that has not been acknowledged is
replaced, never stacked. Foreground delivery renders in the page (plus a
system alert when allowed); background delivery goes only to the system
alert. Nothing in here raises into the caller.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from packages.shared.schemas.order_v1 import NotificationTypeV1, NotificationV1
from services.storefront.app.services.notification_surface import NotificationSurface, PushMessage
from services.storefront.app.services.reconciliation import ObservedTransition

logger = logging.getLogger(__name__)

FALLBACK_TAG = "storefront-notification"
DEFAULT_TITLE = "Order Update"
DEFAULT_BODY = "You have a new notification"


def order_tag(order_number: str | None) -> str:
    if not order_number:
        return FALLBACK_TAG
    return f"order-{order_number}"


def notification_type(data: dict[str, Any]) -> NotificationTypeV1:
    try:
        return NotificationTypeV1(str(data.get("type") or ""))
    except ValueError:
        return NotificationTypeV1.GENERIC


def transition_notification(transition: ObservedTransition) -> NotificationV1:
    order = transition.order
    if transition.type == NotificationTypeV1.ORDER_AWAITING_APPROVAL:
        title = "Order Ready for Approval!"
        body = f"Your order {order.order_number} has been picked and is waiting for your approval."
    elif transition.type == NotificationTypeV1.ORDER_COMPLETED:
        title = "Order Ready!"
        body = f"Your order {order.order_number} has been completed and is ready!"
    else:
        title = DEFAULT_TITLE
        body = f"Your order {order.order_number} was updated."

    return NotificationV1(
        title=title,
        body=body,
        tag=order_tag(order.order_number),
        data={
            "type": transition.type.value,
            "order_number": order.order_number,
            "order_id": order.id,
            "merchant_id": order.merchant_id,
        },
    )


def push_notification(message: PushMessage) -> NotificationV1:
    """Normalise a push payload. Data-only messages win over the notification block."""

    data = dict(message.get("data") or {})
    block = message.get("notification") or {}

    title = data.get("title") or block.get("title") or DEFAULT_TITLE
    body = data.get("body") or block.get("body") or DEFAULT_BODY
    order_number = data.get("order_number") or data.get("orderNumber")
    if order_number:
        data["order_number"] = order_number

    return NotificationV1(
        title=str(title),
        body=str(body),
        tag=order_tag(order_number),
        data=data,
    )


def notification_click_url(data: dict[str, Any], identifier: str | None = None) -> str:
    """Deep link a notification click should open."""

    target = data.get("business_slug") or data.get("merchant_id") or identifier
    if not target:
        return "/"

    url = f"/catalog/{target}"
    if notification_type(data) == NotificationTypeV1.ORDER_AWAITING_APPROVAL:
        url += "?" + urlencode({"action": "approve"})
    return url


class NotificationDispatcher:
    def __init__(self, surface: NotificationSurface, *, system_alerts: bool = True) -> None:
        self._surface = surface
        self._system_alerts = system_alerts
        self._active: dict[str, NotificationV1] = {}

    @property
    def active_tags(self) -> set[str]:
        return set(self._active)

    def notify_transition(self, transition: ObservedTransition, *, visible: bool = True) -> bool:
        return self.dispatch(transition_notification(transition), visible=visible)

    def handle_push(self, message: PushMessage, *, visible: bool) -> NotificationV1 | None:
        notification = push_notification(message)
        if not self.dispatch(notification, visible=visible):
            return None
        return notification

    def dispatch(self, notification: NotificationV1, *, visible: bool) -> bool:
        replacing = notification.tag in self._active
        if replacing:
            logger.debug("Replacing unacknowledged alert tag=%s", notification.tag)

        if visible:
            shown = self._show(self._surface.show_in_page, notification)
            if self._system_alerts and self._permission_granted():
                self._show(self._surface.show_system, notification)
        else:
            # The page is hidden; the platform alert is the only one.
            shown = self._show(self._surface.show_system, notification)

        if shown:
            self._active[notification.tag] = notification
        return shown

    def acknowledge(self, tag: str) -> None:
        self._active.pop(tag, None)

    def retain(self, tags: set[str]) -> None:
        """Forget every active tag not in `tags`."""

        for tag in set(self._active) - tags:
            del self._active[tag]

    def _permission_granted(self) -> bool:
        try:
            return self._surface.permission() == "granted"
        except Exception:
            logger.warning("Notification permission check failed", exc_info=True)
            return False

    @staticmethod
    def _show(show, notification: NotificationV1) -> bool:
        try:
            show(notification)
        except Exception as e:
            logger.warning("Notification not shown tag=%s: %s", notification.tag, e)
            return False
        return True
