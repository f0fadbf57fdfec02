"""Shared event schema (v1).

The backend stores an append-only event log for every order. Clients can
consume these events to render an order history.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    ORDER = "Order"
    CUSTOMER = "Customer"


class EventTypeV1(str, Enum):
    CUSTOMER_REGISTERED = "CUSTOMER_REGISTERED"
    ORDER_PLACED = "ORDER_PLACED"
    PAYMENT_AUTHORIZED = "PAYMENT_AUTHORIZED"
    AUTHORIZATION_ABANDONED = "AUTHORIZATION_ABANDONED"
    ORDER_APPROVED = "ORDER_APPROVED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    ACTION_FAILED = "ACTION_FAILED"


class EventV1(BaseModel):
    id: str
    merchant_id: str
    customer_id: str | None = None

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
