from __future__ import annotations

from datetime import datetime

from packages.shared.schemas.order_v1 import OrderStatusV1, PaymentStatusV1
from pydantic import BaseModel, Field


class ShippingAddress(BaseModel):
    recipient_name: str = ""
    street_address: str = ""
    address_line2: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""

    def missing_fields(self) -> list[str]:
        required = {
            "recipient_name": self.recipient_name,
            "street_address": self.street_address,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
        }
        return [name for name, value in required.items() if not value.strip()]

    def is_complete(self) -> bool:
        return not self.missing_fields()


class CustomerProfile(BaseModel):
    id: str
    email: str
    name: str
    address: ShippingAddress | None = None


class CatalogItem(BaseModel):
    id: str
    name: str
    unit_price_cents: int = Field(..., ge=0)
    category: str = ""
    image_url: str | None = None


class SubstituteLine(BaseModel):
    item_id: str
    name: str
    unit_price_cents: int
    quantity: int
    line_total_cents: int


class OrderItem(BaseModel):
    item_id: str
    name: str
    unit_price_cents: int
    quantity: int = Field(..., ge=1)
    line_total_cents: int
    category: str = ""
    image_url: str | None = None
    allow_substitution: bool = False
    substitutes: list[SubstituteLine] = Field(default_factory=list)

    @property
    def is_substituted(self) -> bool:
        return bool(self.substitutes)

    def payable_cents(self) -> int:
        # A substituted line is superseded by its substitutes.
        if self.substitutes:
            return sum(s.line_total_cents for s in self.substitutes)
        return self.line_total_cents


class OrderDraft(BaseModel):
    merchant_id: str
    order_number: str

    customer_id: str
    customer_email: str
    customer_name: str
    shipping_address: ShippingAddress | None = None

    items: list[OrderItem] = Field(..., min_length=1)
    subtotal_cents: int
    total_cents: int
    original_total_cents: int | None = None

    status: OrderStatusV1 = OrderStatusV1.PENDING_PAYMENT
    payment_method: str = "online"
    payment_status: PaymentStatusV1 = PaymentStatusV1.UNPAID
    source: str = "web_catalog"

    payment_intent_id: str | None = None
    authorized_amount_cents: int | None = None

    created_at: datetime
    updated_at: datetime | None = None
    authorized_at: datetime | None = None
    paid_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class Order(OrderDraft):
    id: str


class CartLineInput(BaseModel):
    # Name and price come from the merchant's catalog, never from the client.
    item_id: str
    quantity: int = Field(..., ge=1)
    allow_substitution: bool = False


class PlaceOrderRequest(BaseModel):
    customer_id: str
    lines: list[CartLineInput] = Field(default_factory=list)
    allow_substitutions_for_all: bool = False


class OrderActionRequest(BaseModel):
    customer_id: str


class AuthorizationOut(BaseModel):
    order: Order
    payment_intent_id: str
    authorized_amount_cents: int


class CustomerOrdersView(BaseModel):
    pending: list[Order] = Field(default_factory=list)
    awaiting_approval: list[Order] = Field(default_factory=list)
    approved: list[Order] = Field(default_factory=list)
