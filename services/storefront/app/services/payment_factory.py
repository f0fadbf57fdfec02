from __future__ import annotations

import os

from services.storefront.app.services.payment_base import PaymentGateway
from services.storefront.app.services.payment_mock import MockPaymentGateway

_MOCK_GATEWAY: MockPaymentGateway | None = None


def get_payment_gateway() -> PaymentGateway:
    """Select a gateway based on env vars.

    Defaults to the mock gateway so tests and local dev never touch real cards.
    The mock is shared across requests so its hold ledger survives from
    authorization to capture.
    """

    global _MOCK_GATEWAY

    mode = os.getenv("STOREFRONT_PAYMENT_GATEWAY", "mock").strip().lower()

    if mode == "mock":
        if _MOCK_GATEWAY is None:
            _MOCK_GATEWAY = MockPaymentGateway()
        return _MOCK_GATEWAY

    if mode == "callable":
        from services.storefront.app.services.payment_callable import CallablePaymentGateway

        return CallablePaymentGateway.from_env()

    raise ValueError(f"Unknown STOREFRONT_PAYMENT_GATEWAY={mode!r}. Expected mock or callable.")
