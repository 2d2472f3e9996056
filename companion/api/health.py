"""
Liveness, readiness and database diagnostics.

GET /healthz        process is up
GET /readyz         database reachable and the documents table exists (503 otherwise)
GET /api/health/db  connection state, latency bucket and missing tables
"""

import logging
import time
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import inspect

from companion.core.database import check_connection, get_engine
from companion.core.logging import LOGGER_NAME, latency_bucket_ms

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("documents",)


class StoreHealth(BaseModel):
    connected: bool
    latency_bucket: str
    missing_tables: List[str] = Field(default_factory=list)


class StoreHealthResponse(BaseModel):
    ok: bool
    db: StoreHealth
    checked_at: str


def _missing_tables(engine) -> List[str]:
    inspector = inspect(engine)
    return [name for name in REQUIRED_TABLES if not inspector.has_table(name)]


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        missing = _missing_tables(engine)
    except Exception as e:
        logger.error(f"[readyz] readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}


@router.get("/db", response_model=StoreHealthResponse)
def health_db():
    start = time.perf_counter()
    connected = check_connection()
    bucket = latency_bucket_ms((time.perf_counter() - start) * 1000)

    missing = list(REQUIRED_TABLES)
    if connected:
        try:
            missing = _missing_tables(get_engine())
        except Exception as e:
            logger.warning(f"[health] table inspection failed: {e}")

    logger.info("health.db", extra={"status": "ok" if connected else "down", "latency_bucket": bucket})
    return StoreHealthResponse(
        ok=connected and not missing,
        db=StoreHealth(connected=connected, latency_bucket=bucket, missing_tables=missing),
        checked_at=datetime.now(timezone.utc).isoformat(),
    )
