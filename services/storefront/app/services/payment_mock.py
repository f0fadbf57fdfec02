from __future__ import annotations

import threading
from dataclasses import dataclass
from uuid import uuid4

from services.storefront.app.models.order import ShippingAddress
from services.storefront.app.services.payment_base import (
    AuthorizationResult,
    HoldAction,
    HoldResult,
    PaymentAlreadyReleasedError,
    PaymentDeclinedError,
    PaymentGatewayError,
    buffered_amount_cents,
)


@dataclass(slots=True)
class _Hold:
    order_id: str
    payment_intent_id: str
    client_secret: str
    authorized_amount_cents: int
    customer_email: str | None
    state: str = "requires_confirmation"
    captured_amount_cents: int | None = None


class MockPaymentGateway:
    """Deterministic in-process gateway with a hold ledger.

    Hold states: requires_confirmation -> authorized -> captured | released.
    """

    name = "MOCK"

    def __init__(
        self,
        *,
        declined_emails: set[str] | None = None,
        distance_miles: float = 3.0,
    ) -> None:
        self._holds: dict[str, _Hold] = {}
        self._lock = threading.Lock()
        self._declined_emails = {e.lower() for e in (declined_emails or set())}
        self._distance_miles = distance_miles

    def create_authorization(
        self,
        order_id: str,
        amount_cents: int,
        buffer_percent: float,
        customer_email: str | None,
    ) -> AuthorizationResult:
        if amount_cents <= 0:
            raise PaymentGatewayError("Order total must be positive to authorize")

        intent_id = f"pi_mock_{uuid4().hex[:16]}"
        hold = _Hold(
            order_id=order_id,
            payment_intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            authorized_amount_cents=buffered_amount_cents(amount_cents, buffer_percent),
            customer_email=customer_email,
        )
        with self._lock:
            self._holds[order_id] = hold

        return AuthorizationResult(
            client_secret=hold.client_secret,
            payment_intent_id=intent_id,
            authorized_amount_cents=hold.authorized_amount_cents,
        )

    def confirm_client_side(self, client_secret: str) -> None:
        with self._lock:
            hold = next((h for h in self._holds.values() if h.client_secret == client_secret), None)
            if hold is None:
                raise PaymentGatewayError("Unknown payment session. Please start checkout again.")
            if (hold.customer_email or "").lower() in self._declined_emails:
                raise PaymentDeclinedError("Your card was declined.")
            hold.state = "authorized"

    def capture_or_cancel(
        self,
        order_id: str,
        merchant_id: str,
        *,
        action: HoldAction,
        amount_cents: int | None = None,
    ) -> HoldResult:
        del merchant_id

        with self._lock:
            hold = self._holds.get(order_id)

            if action == HoldAction.CANCEL:
                if hold is None or hold.state == "released":
                    raise PaymentAlreadyReleasedError(order_id)
                if hold.state == "captured":
                    raise PaymentGatewayError(f"Payment for order {order_id} was already captured")
                hold.state = "released"
                return HoldResult(payment_intent_id=hold.payment_intent_id, action=action)

            if hold is None or hold.state != "authorized":
                raise PaymentGatewayError(f"No authorized payment hold for order {order_id}")

            amount = hold.authorized_amount_cents if amount_cents is None else amount_cents
            if amount > hold.authorized_amount_cents:
                raise PaymentGatewayError(
                    f"Capture of {amount} exceeds authorized {hold.authorized_amount_cents}"
                )
            hold.state = "captured"
            hold.captured_amount_cents = amount
            return HoldResult(
                payment_intent_id=hold.payment_intent_id,
                action=action,
                amount_cents=amount,
            )

    def calculate_distance(
        self,
        customer_address: ShippingAddress,
        business_address: str,
    ) -> float:
        if customer_address.postal_code and customer_address.postal_code in business_address:
            return 0.0
        return self._distance_miles

    def hold_state(self, order_id: str) -> str | None:
        with self._lock:
            hold = self._holds.get(order_id)
            return hold.state if hold else None

    def captured_amount(self, order_id: str) -> int | None:
        with self._lock:
            hold = self._holds.get(order_id)
            return hold.captured_amount_cents if hold else None
