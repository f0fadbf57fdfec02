from __future__ import annotations

from services.storefront.app.db.models import BusinessSlug, CatalogItemRow, Merchant, OnlineCustomer
from services.storefront.app.models.order import CatalogItem, CustomerProfile, ShippingAddress
from sqlalchemy.orm import Session


class MerchantDirectoryError(Exception):
    """Base class for identifier resolution errors."""


class MerchantNotFoundError(MerchantDirectoryError):
    def __init__(self, identifier: str) -> None:
        super().__init__(f"Store not found: {identifier}")
        self.identifier = identifier


class CatalogDisabledError(MerchantDirectoryError):
    def __init__(self, merchant_id: str) -> None:
        super().__init__("This store's online catalog is not available")
        self.merchant_id = merchant_id


def resolve_merchant(db: Session, identifier: str) -> Merchant:
    """Resolve a slug or raw merchant id to a merchant with a public catalog.

    Slugs are tried first so that a slug shadowing a merchant id wins.
    """

    identifier = (identifier or "").strip()
    if not identifier:
        raise MerchantNotFoundError(identifier)

    merchant: Merchant | None = None
    slug = db.get(BusinessSlug, identifier)
    if slug is not None:
        merchant = db.get(Merchant, slug.merchant_id)
    if merchant is None:
        merchant = db.get(Merchant, identifier)
    if merchant is None:
        raise MerchantNotFoundError(identifier)

    if not merchant.public_catalog_enabled:
        raise CatalogDisabledError(merchant.id)
    return merchant


def resolve_merchant_id(db: Session, identifier: str) -> str:
    return resolve_merchant(db, identifier).id


def merchant_slug(db: Session, merchant_id: str) -> str | None:
    row = db.query(BusinessSlug).filter(BusinessSlug.merchant_id == merchant_id).first()
    return row.slug if row else None


def get_customer_profile(db: Session, merchant_id: str, customer_id: str) -> CustomerProfile | None:
    row = db.get(OnlineCustomer, (merchant_id, customer_id))
    if row is None:
        return None
    return CustomerProfile(
        id=row.id,
        email=row.email,
        name=row.name,
        address=ShippingAddress.model_validate(row.address_json or {}),
    )


def _item(row: CatalogItemRow) -> CatalogItem:
    return CatalogItem(
        id=row.id,
        name=row.name,
        unit_price_cents=row.price_cents,
        category=row.category or "",
        image_url=row.image_url,
    )


def _listed_items(db: Session, merchant_id: str):
    return (
        db.query(CatalogItemRow)
        .filter(CatalogItemRow.merchant_id == merchant_id)
        .filter(CatalogItemRow.in_customer_catalog.is_(True))
        .filter(CatalogItemRow.is_deleted.is_(False))
    )


def list_catalog_items(db: Session, merchant_id: str) -> list[CatalogItem]:
    """Items the merchant shows in its public catalog, sorted by name."""

    rows = _listed_items(db, merchant_id).all()
    return sorted((_item(r) for r in rows), key=lambda i: (i.name.lower(), i.id))


def get_catalog_items(db: Session, merchant_id: str, item_ids: list[str]) -> dict[str, CatalogItem]:
    if not item_ids:
        return {}
    rows = _listed_items(db, merchant_id).filter(CatalogItemRow.id.in_(set(item_ids))).all()
    return {r.id: _item(r) for r in rows}
