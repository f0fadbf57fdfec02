from __future__ import annotations

from fastapi import APIRouter, Depends
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1, EventV1
from services.storefront.app.db.deps import get_db
from services.storefront.app.db.models import EventLog
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/orders/{order_id}/events", response_model=list[EventV1])
def list_order_events(order_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    rows = (
        db.query(EventLog)
        .filter(EventLog.entity_type == EntityTypeV1.ORDER.value)
        .filter(EventLog.entity_id == order_id)
        .order_by(EventLog.created_at.asc())
        .limit(200)
        .all()
    )

    return [
        EventV1(
            id=r.id,
            merchant_id=r.merchant_id,
            customer_id=r.customer_id,
            entity_type=EntityTypeV1(r.entity_type),
            entity_id=r.entity_id,
            event_type=EventTypeV1(r.event_type),
            payload=r.event_payload_json or {},
            created_at=r.created_at.isoformat(),
        )
        for r in rows
    ]
