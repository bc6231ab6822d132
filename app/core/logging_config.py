"""
structlog setup for the API process, the scheduler worker and the scripts.

JSON lines in production, colored console output everywhere else. Every event
carries the run context bound by app.core.context (run_id, trigger).

    from app.core.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("SENT", notification_type="closing_3_days", address="123 Main St")

Production:
    {"event": "SENT", "notification_type": "closing_3_days", "run_id": "run_...",
     "level": "info", "timestamp": "2024-06-07T14:00:00Z"}
"""

import logging
import os
import sys
from typing import Any

import structlog

IS_PRODUCTION = os.getenv("ENVIRONMENT", "").lower() == "production"
IS_TEST = "pytest" in sys.modules
LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

# Libraries that log every request or job tick at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "apscheduler")


def _renderer() -> list[Any]:
    if IS_PRODUCTION:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=not IS_TEST)]


def configure_logging() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            *_renderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib logging (uvicorn, sqlalchemy, app.main) goes to stdout too
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=LOG_LEVEL)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_logging()
