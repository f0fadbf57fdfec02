from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Protocol
from uuid import uuid4

from packages.shared.schemas.order_v1 import NotificationV1

PushMessage = dict[str, Any]
Unsubscribe = Callable[[], None]


class NotificationSurfaceError(Exception):
    """Base class for notification surface errors."""


class NotificationUnsupportedError(NotificationSurfaceError):
    pass


class NotificationPermissionError(NotificationSurfaceError):
    pass


class NotificationSurface(Protocol):
    def show_in_page(self, notification: NotificationV1) -> None: ...

    def show_system(self, notification: NotificationV1) -> None: ...

    def permission(self) -> str: ...


class PushChannel(Protocol):
    def on_foreground_message(self, callback: Callable[[PushMessage], None]) -> Unsubscribe: ...

    def request_push_token(self) -> str | None: ...


class InMemoryNotificationSurface:
    """Notification surface that keeps one visible alert per tag.

    Showing an alert whose tag is already visible replaces it, the way
    platform notifications do. Every call is also appended to `history`.
    """

    def __init__(self, *, permission: str = "granted", push_token: str | None = None) -> None:
        self._permission = permission
        self._push_token = push_token
        self._lock = threading.Lock()
        self._listeners: dict[str, Callable[[PushMessage], None]] = {}

        self.in_page: dict[str, NotificationV1] = {}
        self.system: dict[str, NotificationV1] = {}
        self.history: list[tuple[str, NotificationV1]] = []

    def permission(self) -> str:
        return self._permission

    def set_permission(self, permission: str) -> None:
        self._permission = permission

    def request_push_token(self) -> str | None:
        # No token without permission, same as the browser.
        if self._permission != "granted":
            return None
        return self._push_token

    def show_in_page(self, notification: NotificationV1) -> None:
        with self._lock:
            self.in_page[notification.tag] = notification
            self.history.append(("in_page", notification))

    def show_system(self, notification: NotificationV1) -> None:
        if self._permission == "unsupported":
            raise NotificationUnsupportedError("Notifications are not supported here")
        if self._permission != "granted":
            raise NotificationPermissionError(f"Notification permission is {self._permission}")
        with self._lock:
            self.system[notification.tag] = notification
            self.history.append(("system", notification))

    def dismiss(self, tag: str) -> None:
        with self._lock:
            self.in_page.pop(tag, None)
            self.system.pop(tag, None)

    def on_foreground_message(self, callback: Callable[[PushMessage], None]) -> Unsubscribe:
        listener_id = uuid4().hex
        with self._lock:
            self._listeners[listener_id] = callback

        def _unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return _unsubscribe

    def deliver_foreground(self, message: PushMessage) -> int:
        """Push a message to every foreground listener. Returns how many got it."""

        with self._lock:
            listeners = list(self._listeners.values())
        for callback in listeners:
            callback(message)
        return len(listeners)
