"""Request dependencies for route handlers."""

from __future__ import annotations

from fastapi import HTTPException, Request

from poladcyclet.storage import Database


def get_db(request: Request) -> Database:
    """Return the application's database handle.

    Route handlers take it through ``Depends(get_db)`` instead of reaching
    for module state. Responds 503 while the handle is not open.
    """
    db = getattr(request.app.state, "db", None)
    if db is None or db.closed:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return db
