from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from packages.shared.schemas.order_v1 import OrderStatusV1
from services.storefront.app.models.order import (
    CatalogItem,
    CustomerProfile,
    Order,
    OrderItem,
    ShippingAddress,
)
from services.storefront.app.services.lifecycle import OrderLifecycle
from services.storefront.app.services.order_store_memory import InMemoryOrderStore
from services.storefront.app.services.payment_mock import MockPaymentGateway

MERCHANT_ID = "m-1"
MERCHANT_SLUG = "corner-grocer"
CUSTOMER_ID = "c-1"


def full_address(**overrides: str) -> ShippingAddress:
    data = {
        "recipient_name": "Sam Shopper",
        "street_address": "42 Elm St",
        "city": "Springfield",
        "state": "IL",
        "postal_code": "62704",
        "country": "US",
    }
    data.update(overrides)
    return ShippingAddress(**data)


def make_order(
    order_id: str,
    status: OrderStatusV1,
    *,
    order_number: str | None = None,
    customer_id: str = CUSTOMER_ID,
) -> Order:
    return Order(
        id=order_id,
        merchant_id=MERCHANT_ID,
        order_number=order_number or f"ONL-TEST-{order_id.upper()}",
        customer_id=customer_id,
        customer_email="shopper@example.com",
        customer_name="Sam Shopper",
        shipping_address=full_address(),
        items=[
            OrderItem(
                item_id="apple",
                name="Apple",
                unit_price_cents=250,
                quantity=1,
                line_total_cents=250,
            )
        ],
        subtotal_cents=250,
        total_cents=250,
        status=status,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture()
def customer() -> CustomerProfile:
    return CustomerProfile(
        id=CUSTOMER_ID,
        email="shopper@example.com",
        name="Sam Shopper",
        address=full_address(),
    )


@pytest.fixture()
def apple() -> CatalogItem:
    return CatalogItem(id="apple", name="Apple", unit_price_cents=250, category="produce")


@pytest.fixture()
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture()
def gateway() -> MockPaymentGateway:
    return MockPaymentGateway()


@pytest.fixture()
def lifecycle(store: InMemoryOrderStore, gateway: MockPaymentGateway) -> OrderLifecycle:
    return OrderLifecycle(store, gateway, buffer_percent=0.10)


@pytest.fixture()
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    db_path = tmp_path / "storefront_test.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("STOREFRONT_DB_AUTO_CREATE", "true")
    monkeypatch.setenv("STOREFRONT_ORDER_STORE", "sql")
    monkeypatch.setenv("STOREFRONT_PAYMENT_GATEWAY", "mock")
    monkeypatch.delenv("STOREFRONT_AUTH_BUFFER_PERCENT", raising=False)

    from services.storefront.app.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture()
def merchant(client: TestClient) -> str:
    """A public catalog reachable by slug, plus a merchant whose catalog is off.

    The public catalog lists apple and bread. old-stock is deleted and backroom is unlisted.
    """

    from services.storefront.app.db.database import db_session
    from services.storefront.app.db.models import BusinessSlug, CatalogItemRow, Merchant

    db = db_session()
    try:
        db.add(
            Merchant(
                id=MERCHANT_ID,
                business_name="Corner Grocer",
                business_phone="555-0100",
                business_address="1 Market St, Springfield, IL 62701",
                public_catalog_enabled=True,
            )
        )
        db.add(BusinessSlug(slug=MERCHANT_SLUG, merchant_id=MERCHANT_ID))
        db.add_all(
            [
                CatalogItemRow(
                    merchant_id=MERCHANT_ID,
                    id="apple",
                    name="Apple",
                    price_cents=250,
                    category="produce",
                    in_customer_catalog=True,
                ),
                CatalogItemRow(
                    merchant_id=MERCHANT_ID,
                    id="bread",
                    name="bread",
                    price_cents=400,
                    category="bakery",
                    in_customer_catalog=True,
                ),
                CatalogItemRow(
                    merchant_id=MERCHANT_ID,
                    id="old-stock",
                    name="Old Stock",
                    price_cents=100,
                    in_customer_catalog=True,
                    is_deleted=True,
                ),
                CatalogItemRow(
                    merchant_id=MERCHANT_ID,
                    id="backroom",
                    name="Backroom Item",
                    price_cents=100,
                ),
            ]
        )
        db.add(Merchant(id="m-private", business_name="Back Room"))
        db.commit()
    finally:
        db.close()
    return MERCHANT_ID
