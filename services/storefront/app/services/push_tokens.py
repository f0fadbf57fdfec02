from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone

from services.storefront.app.db.models import CustomerPushToken
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def push_token_id(token: str) -> str:
    """Stable per-device key: the first 32 hex chars of the token's SHA-256."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]


def register_push_token(
    db: Session,
    *,
    merchant_id: str,
    customer_id: str,
    customer_email: str | None,
    token: str,
    platform: str = "web",
) -> CustomerPushToken:
    """Upsert a device token. Re-registering the same token merges into its row.

    The caller commits.
    """

    token = (token or "").strip()
    if not token:
        raise ValueError("Push token is required")

    token_id = push_token_id(token)
    row = db.get(CustomerPushToken, (merchant_id, token_id))
    if row is None:
        row = CustomerPushToken(merchant_id=merchant_id, id=token_id, token=token)
        db.add(row)

    row.customer_id = customer_id
    row.customer_email = customer_email
    row.platform = platform
    row.updated_at = datetime.now(timezone.utc)
    db.flush()

    logger.info(
        "Push token registered merchant=%s customer=%s token_id=%s", merchant_id, customer_id, token_id
    )
    return row


def list_push_tokens(db: Session, merchant_id: str, customer_id: str) -> list[CustomerPushToken]:
    return (
        db.query(CustomerPushToken)
        .filter(CustomerPushToken.merchant_id == merchant_id)
        .filter(CustomerPushToken.customer_id == customer_id)
        .order_by(CustomerPushToken.updated_at.asc())
        .all()
    )
