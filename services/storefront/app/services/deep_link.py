from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from services.storefront.app.models.order import Order

logger = logging.getLogger(__name__)

APPROVE_ACTION = "approve"


class ApprovalLatch(str, Enum):
    IDLE = "idle"
    LATCHED = "latched"
    FIRED = "fired"


def url_action(url: str) -> str | None:
    for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True):
        if key == "action":
            return value
    return None


def strip_action(url: str) -> str:
    parts = urlparse(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "action"]
    return urlunparse(parts._replace(query=urlencode(query)))


class DeepLinkActionResolver:
    """Opens the approval dialog for an `action=approve` deep link exactly once.

    The merchant, the signed-in customer and the awaiting-approval orders all
    arrive asynchronously and in any order. Every input re-evaluates the latch;
    it fires only when all three are present, then clears the action from the
    url so a refresh does not fire it again.
    """

    def __init__(
        self,
        *,
        open_dialog: Callable[[], None],
        replace_url: Callable[[str], None],
    ) -> None:
        self._open_dialog = open_dialog
        self._replace_url = replace_url

        self.state = ApprovalLatch.IDLE
        self._url: str | None = None
        self._merchant_id: str | None = None
        self._customer_id: str | None = None
        self._awaiting: Sequence[Order] = ()

    def on_url(self, url: str) -> None:
        self._url = url
        if url_action(url) == APPROVE_ACTION:
            self._latch()
        self._evaluate()

    def on_merchant_resolved(self, merchant_id: str) -> None:
        self._merchant_id = merchant_id
        self._evaluate()

    def on_auth(self, customer_id: str | None) -> None:
        self._customer_id = customer_id
        self._evaluate()

    def on_awaiting_orders(self, orders: Sequence[Order]) -> None:
        self._awaiting = tuple(orders)
        self._evaluate()

    def request(self) -> None:
        """Ask for the dialog without a deep link, e.g. from a foreground push."""

        if self.state == ApprovalLatch.FIRED:
            # A new request after a fired one is a fresh cycle.
            self.state = ApprovalLatch.IDLE
        self._latch()
        self._evaluate()

    def _latch(self) -> None:
        if self.state == ApprovalLatch.IDLE:
            self.state = ApprovalLatch.LATCHED

    def _evaluate(self) -> None:
        if self.state != ApprovalLatch.LATCHED:
            return
        if self._customer_id is None:
            logger.debug("Approve action latched; waiting for sign-in")
            return
        if self._merchant_id is None:
            logger.debug("Approve action latched; waiting for merchant resolution")
            return
        if not self._awaiting:
            logger.debug("Approve action latched; waiting for awaiting-approval orders")
            return

        self.state = ApprovalLatch.FIRED
        logger.info("Opening approval dialog for %d order(s)", len(self._awaiting))
        self._open_dialog()

        if self._url is not None and url_action(self._url) == APPROVE_ACTION:
            self._url = strip_action(self._url)
            self._replace_url(self._url)
