from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from services.storefront.app.models.order import ShippingAddress
from services.storefront.app.services.payment_base import (
    AuthorizationResult,
    HoldAction,
    HoldResult,
    PaymentAlreadyReleasedError,
    PaymentDeclinedError,
    PaymentGatewayError,
)

logger = logging.getLogger(__name__)

_ALREADY_RELEASED_MARKERS = ("already released", "already canceled", "already cancelled")


@dataclass(frozen=True, slots=True)
class _CallableConfig:
    base_url: str
    id_token: str | None
    timeout_s: float


class CallablePaymentGateway:
    """Gateway backed by the hosted payment functions.

    Each operation is one remote procedure taking `{"data": {...}}` and answering
    `{"result": {...}}` or `{"error": {"status": ..., "message": ...}}`.

    Env vars:
    - STOREFRONT_PAYMENT_GATEWAY=callable
    - STOREFRONT_FUNCTIONS_BASE_URL (required)
    - STOREFRONT_FUNCTIONS_ID_TOKEN (optional bearer token)
    - STOREFRONT_FUNCTIONS_TIMEOUT_S (default: 30)
    """

    name = "CALLABLE"

    def __init__(self, cfg: _CallableConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_env(cls) -> "CallablePaymentGateway":
        base_url = os.getenv("STOREFRONT_FUNCTIONS_BASE_URL", "").strip().rstrip("/")
        if not base_url:
            raise ValueError(
                "STOREFRONT_FUNCTIONS_BASE_URL is required when STOREFRONT_PAYMENT_GATEWAY=callable"
            )

        id_token = os.getenv("STOREFRONT_FUNCTIONS_ID_TOKEN", "").strip() or None
        timeout_s = float(os.getenv("STOREFRONT_FUNCTIONS_TIMEOUT_S", "30"))

        return cls(_CallableConfig(base_url=base_url, id_token=id_token, timeout_s=timeout_s))

    def create_authorization(
        self,
        order_id: str,
        amount_cents: int,
        buffer_percent: float,
        customer_email: str | None,
    ) -> AuthorizationResult:
        result = self._call(
            "createOrderPaymentAuthorization",
            {
                "orderId": order_id,
                "amountCents": amount_cents,
                "bufferPercent": buffer_percent,
                "customerEmail": customer_email,
            },
        )
        try:
            return AuthorizationResult(
                client_secret=str(result["clientSecret"]),
                payment_intent_id=str(result["paymentIntentId"]),
                authorized_amount_cents=int(result["authorizedAmountCents"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentGatewayError(f"Unexpected authorization response: {result!r}") from e

    def confirm_client_side(self, client_secret: str) -> None:
        result = self._call("confirmOrderPaymentAuthorization", {"clientSecret": client_secret})
        status = str(result.get("status") or "")
        if status not in {"requires_capture", "succeeded"}:
            raise PaymentDeclinedError(str(result.get("message") or "Payment failed"))

    def capture_or_cancel(
        self,
        order_id: str,
        merchant_id: str,
        *,
        action: HoldAction,
        amount_cents: int | None = None,
    ) -> HoldResult:
        data: dict[str, Any] = {
            "orderId": order_id,
            "merchantUserId": merchant_id,
            "action": action.value,
        }
        if amount_cents is not None:
            data["amountCents"] = amount_cents

        try:
            result = self._call("captureOrCancelOrderPayment", data)
        except PaymentGatewayError as e:
            if action == HoldAction.CANCEL and _looks_already_released(str(e)):
                raise PaymentAlreadyReleasedError(order_id) from e
            raise

        return HoldResult(
            payment_intent_id=str(result.get("paymentIntentId") or ""),
            action=action,
            amount_cents=result.get("amountCents"),
        )

    def calculate_distance(
        self,
        customer_address: ShippingAddress,
        business_address: str,
    ) -> float:
        result = self._call(
            "calculateDistance",
            {
                "customerAddress": customer_address.model_dump(),
                "businessAddress": business_address,
            },
        )
        try:
            return float(result["miles"])
        except (KeyError, TypeError, ValueError) as e:
            raise PaymentGatewayError(f"Unexpected distance response: {result!r}") from e

    def _call(self, name: str, data: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._cfg.base_url}/{name}"

        req = urllib.request.Request(url, method="POST")
        req.add_header("Content-Type", "application/json")
        if self._cfg.id_token:
            req.add_header("Authorization", f"Bearer {self._cfg.id_token}")

        body = json.dumps({"data": data}).encode("utf-8")
        try:
            with urllib.request.urlopen(req, data=body, timeout=self._cfg.timeout_s) as resp:
                payload = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise PaymentGatewayError(_error_message(raw) or f"{name} failed: HTTP {e.code}") from e
        except urllib.error.URLError as e:
            raise PaymentGatewayError(f"{name} unreachable: {e.reason}") from e

        if "error" in payload:
            raise PaymentGatewayError(_payload_error(payload) or f"{name} failed")

        result = payload.get("result")
        if not isinstance(result, dict):
            raise PaymentGatewayError(f"Unexpected {name} response shape: {payload!r}")

        logger.debug("Callable %s ok", name)
        return result


def _error_message(raw: str) -> str | None:
    try:
        payload = json.loads(raw)
    except ValueError:
        return raw.strip() or None
    if not isinstance(payload, dict):
        return raw.strip() or None
    return _payload_error(payload)


def _payload_error(payload: dict[str, Any]) -> str | None:
    err = payload.get("error") or {}
    if not isinstance(err, dict):
        return str(err)
    status = str(err.get("status") or "").strip()
    message = str(err.get("message") or "").strip()
    if status and message:
        return f"{status}: {message}"
    return message or status or None


def _looks_already_released(message: str) -> bool:
    lowered = message.lower()
    return any(m in lowered for m in _ALREADY_RELEASED_MARKERS)
