from __future__ import annotations

from pydantic import BaseModel
from services.storefront.app.models.order import ShippingAddress


class MerchantOut(BaseModel):
    merchant_id: str
    slug: str | None = None
    business_name: str
    business_phone: str | None = None
    business_address: str | None = None


class CustomerRegisterRequest(BaseModel):
    email: str
    name: str
    address: ShippingAddress


class CustomerOut(BaseModel):
    customer_id: str
    merchant_id: str
    email: str
    name: str
    address: ShippingAddress


class DistanceOut(BaseModel):
    merchant_id: str
    customer_id: str
    miles: float


class PushTokenRequest(BaseModel):
    token: str
    platform: str = "web"


class PushTokenOut(BaseModel):
    token_id: str
    merchant_id: str
    customer_id: str
    platform: str
