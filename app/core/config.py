from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    PROJECT_NAME: str = "Closing Reminders"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./closing_reminders.db"

    # Slack bot (chat.postMessage)
    SLACK_BOT_TOKEN: str = ""
    SLACK_API_BASE: str = "https://slack.com/api"

    # Other guarded dependencies
    OPENAI_API_KEY: str = ""
    REPLIERS_API_KEY: str = ""

    # Kill switch: every outbound Slack side effect becomes a logged no-op
    DISABLE_SLACK_NOTIFICATIONS: bool = False

    # Scheduler
    RUN_SCHEDULER: bool = False
    REMINDER_TIMEZONE: str = "America/Chicago"
    REMINDER_HOUR: int = 9  # local time

    # Outbound call policy
    SEND_TIMEOUT_SECONDS: float = 10.0
    SEND_MAX_RETRIES: int = 3
    SEND_BASE_DELAY_SECONDS: float = 1.0

    # Operator endpoints
    ADMIN_API_TOKEN: str = ""

    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()


# (name, required, description)
ENV_VARS: list[tuple[str, bool, str]] = [
    ("DATABASE_URL", True, "database connection string"),
    ("SLACK_BOT_TOKEN", False, "Slack bot token for notifications"),
    ("REPLIERS_API_KEY", False, "Repliers MLS API key"),
    ("OPENAI_API_KEY", False, "OpenAI API key for AI features"),
]


def validate_environment(config: Settings | None = None) -> dict[str, Any]:
    """
    Report missing configuration at startup.

    Returns a dict with `valid`, `missing` (required) and `warnings` (optional).
    """
    config = config or settings
    missing: list[str] = []
    warnings: list[str] = []

    for name, required, description in ENV_VARS:
        if getattr(config, name, None):
            continue
        if required:
            missing.append(f"{name} ({description})")
        else:
            warnings.append(f"{name} not set - {description} will be unavailable")

    if missing:
        logger.error("Required environment variables missing", missing=missing)
    if warnings:
        logger.warning("Optional environment variables missing", warnings=warnings)
    if not missing and not warnings:
        logger.info("All environment variables validated")

    return {"valid": not missing, "missing": missing, "warnings": warnings}
