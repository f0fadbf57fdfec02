"""Shared order schema (v1).

The catalog client, the merchant dashboard and push payloads all speak these
values. Adding a member here means updating every table keyed by it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OrderStatusV1(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING = "pending"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatusV1(str, Enum):
    UNPAID = "unpaid"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RELEASED = "released"
    RELEASE_FAILED = "release_failed"


class NotificationTypeV1(str, Enum):
    ORDER_AWAITING_APPROVAL = "order_awaiting_approval"
    ORDER_COMPLETED = "order_completed"
    GENERIC = "generic"


ACTIVE_STATUSES: frozenset[OrderStatusV1] = frozenset(
    {
        OrderStatusV1.PENDING,
        OrderStatusV1.AWAITING_APPROVAL,
        OrderStatusV1.APPROVED,
    }
)

TERMINAL_STATUSES: frozenset[OrderStatusV1] = frozenset(
    {OrderStatusV1.COMPLETED, OrderStatusV1.CANCELLED}
)


class NotificationV1(BaseModel):
    title: str
    body: str

    # Alerts sharing a tag replace each other instead of stacking.
    tag: str

    # Carries order_number and type for deep-link handling.
    data: dict[str, Any] = Field(default_factory=dict)
