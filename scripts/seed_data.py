from __future__ import annotations

import argparse

from services.storefront.app.db.database import db_session
from services.storefront.app.db.init_db import init_db
from services.storefront.app.db.models import BusinessSlug, CatalogItemRow, Merchant, OnlineCustomer
from services.storefront.app.models.order import ShippingAddress

_DEMO_ITEMS = [
    ("apple", "Apple", 250, "produce"),
    ("bread", "Sourdough Bread", 550, "bakery"),
    ("milk", "Whole Milk", 399, "dairy"),
]


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed a demo storefront merchant, catalog and customer")
    parser.add_argument("--merchant-id", default="m-1")
    parser.add_argument("--business-name", default="Corner Grocer")
    parser.add_argument("--business-address", default="1 Market St, Springfield, IL 62701")
    parser.add_argument("--slug", default="corner-grocer")
    parser.add_argument("--customer-id", default="c-1")
    parser.add_argument("--customer-email", default="shopper@example.com")
    parser.add_argument("--customer-name", default="Sam Shopper")
    args = parser.parse_args()

    init_db()

    db = db_session()
    try:
        if db.get(Merchant, args.merchant_id) is None:
            db.add(
                Merchant(
                    id=args.merchant_id,
                    business_name=args.business_name,
                    business_address=args.business_address,
                    public_catalog_enabled=True,
                )
            )

        if args.slug and db.get(BusinessSlug, args.slug) is None:
            db.add(BusinessSlug(slug=args.slug, merchant_id=args.merchant_id))

        for item_id, name, price_cents, category in _DEMO_ITEMS:
            if db.get(CatalogItemRow, (args.merchant_id, item_id)) is None:
                db.add(
                    CatalogItemRow(
                        merchant_id=args.merchant_id,
                        id=item_id,
                        name=name,
                        price_cents=price_cents,
                        category=category,
                        in_customer_catalog=True,
                    )
                )

        if db.get(OnlineCustomer, (args.merchant_id, args.customer_id)) is None:
            address = ShippingAddress(
                recipient_name=args.customer_name,
                street_address="42 Elm St",
                city="Springfield",
                state="IL",
                postal_code="62704",
                country="US",
            )
            db.add(
                OnlineCustomer(
                    merchant_id=args.merchant_id,
                    id=args.customer_id,
                    email=args.customer_email,
                    name=args.customer_name,
                    address_json=address.model_dump(mode="json"),
                )
            )

        db.commit()
        print(f"Seeded merchant={args.merchant_id} slug={args.slug} customer={args.customer_id}")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
