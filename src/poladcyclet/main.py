"""Application entry point: opens the database and serves the API."""

from __future__ import annotations

import json
import logging
import sys

import uvicorn

from poladcyclet.config import load_config
from poladcyclet.web.app import create_app

logger = logging.getLogger("poladcyclet")


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; message text is escaped by json.dumps."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _setup_logging(log_level: str, log_format: str) -> logging.Handler:
    """Configure root logger based on config and return the installed handler."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)
    return handler


def main() -> None:
    """Load config, set up logging, and run the web server."""
    config = load_config()

    _setup_logging(config.log_level, config.log_format)

    logger.info(
        "Polad Cyclet starting (env=%s, db=%s)",
        config.app_env,
        config.database_path,
    )

    app = create_app(config)

    # The database is opened by the app lifespan; a failure there aborts startup.
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
