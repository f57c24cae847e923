"""Configuration loading and validation."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

PRODUCTION_DATABASE_PATH = "/data/poladcyclet.db"
DEVELOPMENT_DATABASE_PATH = str(_PROJECT_ROOT / "data" / "poladcyclet.db")


@dataclass(frozen=True)
class Config:
    """Application configuration. All values sourced from environment variables."""

    database_path: str

    # Optional: Storage
    migrations_dir: str | None = None

    # Optional: Web
    host: str = "0.0.0.0"
    port: int = 3001

    # Optional: Application
    log_level: str = "INFO"
    log_format: str = "text"
    app_env: str = "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


def resolve_database_path(app_env: str) -> str:
    """Pick the backing file: DB_PATH, else the production or development default."""
    explicit = os.environ.get("DB_PATH")
    if explicit:
        return explicit
    if app_env == "production":
        return PRODUCTION_DATABASE_PATH
    return DEVELOPMENT_DATABASE_PATH


def default_database_path() -> str:
    """Backing file for the current environment, without loading the rest of the config."""
    return resolve_database_path(os.environ.get("APP_ENV", "development"))


def load_config(env_path: str | Path | None = None) -> Config:
    """Load configuration from environment variables.

    Loads a .env file if present (for local development). Nothing is
    required; PORT must parse as an integer or ValueError is raised.
    """
    load_dotenv(dotenv_path=env_path)

    app_env = os.environ.get("APP_ENV", "development")

    raw_port = os.environ.get("PORT", "3001")
    try:
        port = int(raw_port)
    except ValueError:
        raise ValueError(f"Invalid PORT value: {raw_port!r}") from None

    return Config(
        database_path=resolve_database_path(app_env),
        migrations_dir=os.environ.get("MIGRATIONS_DIR") or None,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=port,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        log_format=os.environ.get("LOG_FORMAT", "text"),
        app_env=app_env,
    )
