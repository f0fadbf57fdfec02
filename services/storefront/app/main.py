"""Storefront API service entrypoint."""

import logging
import os

from fastapi import FastAPI

from services.storefront.app.db.init_db import init_db
from services.storefront.app.routers.audit import router as audit_router
from services.storefront.app.routers.catalog import router as catalog_router
from services.storefront.app.routers.order import router as order_router

logging.basicConfig(
    level=os.getenv("STOREFRONT_LOG_LEVEL", "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Storefront API")

app.include_router(catalog_router)
app.include_router(order_router)
app.include_router(audit_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
