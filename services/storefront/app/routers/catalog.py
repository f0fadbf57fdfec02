from __future__ import annotations

from datetime import datetime, timezone
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.storefront.app.db.deps import get_db
from services.storefront.app.db.models import OnlineCustomer
from services.storefront.app.models.catalog import (
    CustomerOut,
    CustomerRegisterRequest,
    DistanceOut,
    MerchantOut,
    PushTokenOut,
    PushTokenRequest,
)
from services.storefront.app.models.order import CatalogItem
from services.storefront.app.services.audit_log import log_event
from services.storefront.app.services.merchant_directory import (
    MerchantDirectoryError,
    get_customer_profile,
    list_catalog_items,
    merchant_slug,
    resolve_merchant,
    resolve_merchant_id,
)
from services.storefront.app.services.payment_base import PaymentGatewayError
from services.storefront.app.services.payment_factory import get_payment_gateway
from services.storefront.app.services.push_tokens import register_push_token
from sqlalchemy.orm import Session

router = APIRouter()


def _raise_catalog_http_error(e: Exception) -> NoReturn:
    if isinstance(e, MerchantDirectoryError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, PaymentGatewayError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, ValueError):
        raise HTTPException(status_code=500, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


@router.get("/v1/catalog/{identifier}", response_model=MerchantOut)
def get_catalog(identifier: str, db: Session = Depends(get_db)) -> MerchantOut:
    try:
        merchant = resolve_merchant(db, identifier)
    except Exception as e:
        _raise_catalog_http_error(e)

    return MerchantOut(
        merchant_id=merchant.id,
        slug=merchant_slug(db, merchant.id),
        business_name=merchant.business_name,
        business_phone=merchant.business_phone,
        business_address=merchant.business_address,
    )


@router.get("/v1/catalog/{identifier}/items", response_model=list[CatalogItem])
def list_items(identifier: str, db: Session = Depends(get_db)) -> list[CatalogItem]:
    try:
        merchant_id = resolve_merchant_id(db, identifier)
    except Exception as e:
        _raise_catalog_http_error(e)

    return list_catalog_items(db, merchant_id)


@router.put("/v1/catalog/{identifier}/customers/{customer_id}", response_model=CustomerOut)
def register_customer(
    identifier: str,
    customer_id: str,
    payload: CustomerRegisterRequest,
    db: Session = Depends(get_db),
) -> CustomerOut:
    try:
        merchant_id = resolve_merchant_id(db, identifier)
    except Exception as e:
        _raise_catalog_http_error(e)

    missing = payload.address.missing_fields()
    if missing:
        raise HTTPException(
            status_code=422,
            detail=f"Please complete your address: {', '.join(missing)}",
        )

    address = payload.address.model_dump(mode="json")
    row = db.get(OnlineCustomer, (merchant_id, customer_id))
    if row is None:
        row = OnlineCustomer(
            merchant_id=merchant_id,
            id=customer_id,
            email=payload.email,
            name=payload.name,
            address_json=address,
        )
        db.add(row)
    else:
        row.email = payload.email
        row.name = payload.name
        row.address_json = address
        row.updated_at = datetime.now(timezone.utc)

    log_event(
        db,
        merchant_id=merchant_id,
        customer_id=customer_id,
        entity_type=EntityTypeV1.CUSTOMER,
        entity_id=customer_id,
        event_type=EventTypeV1.CUSTOMER_REGISTERED,
        event_payload={"email": payload.email, "postal_code": payload.address.postal_code},
    )
    db.commit()

    return CustomerOut(
        customer_id=customer_id,
        merchant_id=merchant_id,
        email=payload.email,
        name=payload.name,
        address=payload.address,
    )


@router.get("/v1/catalog/{identifier}/distance", response_model=DistanceOut)
def get_distance(identifier: str, customer_id: str, db: Session = Depends(get_db)) -> DistanceOut:
    try:
        merchant = resolve_merchant(db, identifier)
    except Exception as e:
        _raise_catalog_http_error(e)

    customer = get_customer_profile(db, merchant.id, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")

    try:
        gateway = get_payment_gateway()
        miles = gateway.calculate_distance(customer.address, merchant.business_address or "")
    except Exception as e:
        _raise_catalog_http_error(e)

    return DistanceOut(merchant_id=merchant.id, customer_id=customer_id, miles=miles)


@router.put(
    "/v1/catalog/{identifier}/customers/{customer_id}/push-tokens",
    response_model=PushTokenOut,
)
def put_push_token(
    identifier: str,
    customer_id: str,
    payload: PushTokenRequest,
    db: Session = Depends(get_db),
) -> PushTokenOut:
    try:
        merchant_id = resolve_merchant_id(db, identifier)
    except Exception as e:
        _raise_catalog_http_error(e)

    customer = get_customer_profile(db, merchant_id, customer_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    if not payload.token.strip():
        raise HTTPException(status_code=422, detail="Push token is required")

    row = register_push_token(
        db,
        merchant_id=merchant_id,
        customer_id=customer_id,
        customer_email=customer.email,
        token=payload.token,
        platform=payload.platform,
    )
    db.commit()

    return PushTokenOut(
        token_id=row.id,
        merchant_id=merchant_id,
        customer_id=customer_id,
        platform=row.platform,
    )
