"""
Health endpoints.

Lightweight liveness and readiness checks that never expose secrets.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from clientlane.core.database import Database, get_database

logger = logging.getLogger("clientlane")

router = APIRouter(tags=["health"])

REQUIRED_TABLES = ("users", "plans", "subscriptions", "portals", "files")


@router.get("/healthz")
def healthz():
    """Liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(db: Database = Depends(get_database)):
    """Readiness check: DB connectivity + required tables."""
    if not db.check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    inspector = inspect(db.engine)
    missing = [table for table in REQUIRED_TABLES if not inspector.has_table(table)]
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {"status": "ok"}
