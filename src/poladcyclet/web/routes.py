"""API route handlers."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from poladcyclet.storage import Database, list_tables
from poladcyclet.web.deps import get_db
from poladcyclet.web.models import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health(db: Database = Depends(get_db)):
    """Check that the database answers queries and return health status."""
    try:
        db.prepare("SELECT 1").get()
        tables = list_tables(db)
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(
            {"status": "unhealthy", "database": "error", "detail": str(exc)},
            status_code=503,
        )
    return HealthResponse(
        status="ok",
        message="Polad Cyclet API is running",
        database="ok",
        tables=len(tables),
    )
