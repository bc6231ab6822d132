import logging
from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import notifications
from app.core.circuit_breaker import build_default_registry
from app.core.config import settings, validate_environment
from app.core.errors import init_sentry
from app.core.scheduler import start_scheduler, stop_scheduler
from app.db import create_db_and_tables

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("=" * 50)
    logger.info("Closing Reminders API Starting")
    logger.info(
        f"DISABLE_SLACK_NOTIFICATIONS = {settings.DISABLE_SLACK_NOTIFICATIONS} "
        f"({'notifications OFF' if settings.DISABLE_SLACK_NOTIFICATIONS else 'notifications ON'})"
    )
    logger.info("=" * 50)

    validate_environment()
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    create_db_and_tables()

    # One breaker per dependency, shared by every caller in this process
    registry = build_default_registry()
    app.state.breakers = registry

    if settings.RUN_SCHEDULER:
        start_scheduler(registry)
    else:
        logger.info("RUN_SCHEDULER is false - skipping scheduler startup in this process.")

    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    notifications.router,
    prefix=f"{settings.API_V1_STR}/notifications",
    tags=["notifications"],
)


@app.get("/")
def root():
    return {"message": "Welcome to Closing Reminders API"}


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
