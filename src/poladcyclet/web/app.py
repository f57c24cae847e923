"""FastAPI application factory for the Polad Cyclet API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from poladcyclet.config import Config
from poladcyclet.storage import apply_migrations, init_database
from poladcyclet.web.routes import router

logger = logging.getLogger(__name__)


def _database_lifespan(config: Config):
    """Open the database before serving and close it (final save) on shutdown."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            db = init_database(config.database_path)
        except Exception:
            logger.exception("Failed to initialize database at %s", config.database_path)
            raise
        try:
            if config.migrations_dir and Path(config.migrations_dir).is_dir():
                apply_migrations(db, config.migrations_dir)
            app.state.db = db
            yield
        finally:
            app.state.db = None
            db.close()

    return lifespan


def create_app(config: Config, lifespan=None) -> FastAPI:
    """Build and return a configured FastAPI application."""
    app = FastAPI(
        title="Polad Cyclet",
        docs_url="/api/docs",
        lifespan=lifespan or _database_lifespan(config),
    )
    app.state.config = config
    app.state.db = None
    app.include_router(router, prefix="/api")
    return app
