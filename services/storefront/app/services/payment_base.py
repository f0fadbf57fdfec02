from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

from services.storefront.app.models.order import ShippingAddress

DEFAULT_BUFFER_PERCENT = 0.10


class PaymentGatewayError(Exception):
    """Base class for payment gateway errors.

    Messages are safe to show to the customer as a retryable error.
    """


class PaymentDeclinedError(PaymentGatewayError):
    """The customer's card entry or 3-D Secure step did not succeed."""


class PaymentAlreadyReleasedError(PaymentGatewayError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Payment hold for order {order_id} was already released")
        self.order_id = order_id


class HoldAction(str, Enum):
    CAPTURE = "capture"
    CANCEL = "cancel"


@dataclass(frozen=True, slots=True)
class AuthorizationResult:
    client_secret: str
    payment_intent_id: str
    authorized_amount_cents: int


@dataclass(frozen=True, slots=True)
class HoldResult:
    payment_intent_id: str
    action: HoldAction
    amount_cents: int | None = None


class PaymentGateway(Protocol):
    name: str

    def create_authorization(
        self,
        order_id: str,
        amount_cents: int,
        buffer_percent: float,
        customer_email: str | None,
    ) -> AuthorizationResult: ...

    def confirm_client_side(self, client_secret: str) -> None: ...

    def capture_or_cancel(
        self,
        order_id: str,
        merchant_id: str,
        *,
        action: HoldAction,
        amount_cents: int | None = None,
    ) -> HoldResult: ...

    def calculate_distance(
        self,
        customer_address: ShippingAddress,
        business_address: str,
    ) -> float: ...


def buffered_amount_cents(amount_cents: int, buffer_percent: float) -> int:
    """Hold amount for an order total, rounded half up to the cent."""

    held = Decimal(amount_cents) * (Decimal(1) + Decimal(str(buffer_percent)))
    return int(held.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def default_buffer_percent() -> float:
    raw = os.getenv("STOREFRONT_AUTH_BUFFER_PERCENT", str(DEFAULT_BUFFER_PERCENT)).strip()
    value = float(raw)
    if value < 0:
        raise ValueError(f"STOREFRONT_AUTH_BUFFER_PERCENT must be >= 0, got {raw!r}")
    return value
