from __future__ import annotations

import os

from services.storefront.app.services.order_store_base import OrderStore
from sqlalchemy.orm import Session


def get_order_store(db: Session) -> OrderStore:
    """Select the order store based on env vars.

    Defaults to the SQL store. `memory` keeps everything in-process, which is
    what the catalog session uses when no database is around.
    """

    mode = os.getenv("STOREFRONT_ORDER_STORE", "sql").strip().lower()

    if mode == "sql":
        from services.storefront.app.services.order_store_sql import SqlOrderStore

        return SqlOrderStore(db)

    if mode == "memory":
        from services.storefront.app.services.order_store_memory import store

        return store

    raise ValueError(f"Unknown STOREFRONT_ORDER_STORE={mode!r}. Expected sql or memory.")
