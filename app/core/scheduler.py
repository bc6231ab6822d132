import asyncio
from datetime import timedelta
from typing import Any, Dict
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import settings
from app.core.context import clear_context, start_run
from app.core.errors import capture_exception, error_boundary, is_sentry_enabled
from app.core.logging_config import get_logger
from app.core.typing import utc_now
from app.db import engine
from app.services.dedup import NotificationDeduplicator
from app.services.reminders import ReminderScheduler, RunStats
from app.services.slack import SlackClient

logger = get_logger(__name__)

scheduler = AsyncIOScheduler(timezone=settings.REMINDER_TIMEZONE)

# Ledger rows older than this are pruned; only same-day rows matter for dedup
LEDGER_RETENTION_DAYS = 90

# Serializes scheduled and manual runs (dedup is check-then-act)
_run_lock = asyncio.Lock()
_last_run: Dict[str, Any] = {"started_at": None, "stats": None, "trigger": None, "run_id": None}


def is_processing() -> bool:
    return _run_lock.locked()


async def run_closing_reminders(
    registry: CircuitBreakerRegistry, trigger: str, bypass_disable: bool = False
) -> RunStats:
    """One reminder pass in its own session and run context."""
    async with _run_lock:
        run_id = start_run(trigger)
        started_at = utc_now()
        try:
            with Session(engine) as session:
                reminders = ReminderScheduler(session, registry)
                stats = await reminders.process_due_reminders(started_at, bypass_kill_switch=bypass_disable)
            _last_run.update(started_at=started_at.isoformat(), stats=stats.as_dict(), trigger=trigger, run_id=run_id)
            return stats
        finally:
            clear_context()


async def job_closing_reminders(registry: CircuitBreakerRegistry):
    """
    Daily closing-date reminders.
    Runs once a day at REMINDER_HOUR local time.
    """
    if settings.DISABLE_SLACK_NOTIFICATIONS:
        logger.warning("DISABLED - DISABLE_SLACK_NOTIFICATIONS=true, no closing date reminders will be sent")

    try:
        await run_closing_reminders(registry, "scheduled")
    except Exception as e:
        capture_exception(e, context={"job": "job_closing_reminders"})


async def job_prune_sent_notifications():
    """Drop old ledger rows. Runs daily at 3 AM local time (off-peak)."""
    cutoff = utc_now() - timedelta(days=LEDGER_RETENTION_DAYS)
    with error_boundary("prune_sent_notifications", cutoff=cutoff.isoformat()):
        with Session(engine) as session:
            NotificationDeduplicator(session, utc_now(), ZoneInfo(settings.REMINDER_TIMEZONE)).prune_before(cutoff)


async def trigger_notifications_now(
    registry: CircuitBreakerRegistry, bypass_disable: bool = False
) -> Dict[str, Any]:
    """
    Run the reminder pass on demand (diagnostics / admin).

    `bypass_disable` runs for real even while the kill switch is set; user
    preferences and same-day dedup still apply.
    """
    if not bypass_disable and settings.DISABLE_SLACK_NOTIFICATIONS:
        return {
            "success": False,
            "error": "Notifications disabled via environment variable. Use bypass_disable=true to test.",
            "hint": "POST with {\"bypass_disable\": true} to run in test mode (will still respect user preferences)",
        }

    if is_processing():
        return {"success": False, "error": "Already processing"}

    stats = await run_closing_reminders(registry, "manual", bypass_disable=bypass_disable)
    return {"success": True, "stats": stats.as_dict(), "bypass_used": bypass_disable}


def get_notification_status() -> Dict[str, Any]:
    return {
        "bot_configured": SlackClient(token=settings.SLACK_BOT_TOKEN).configured,
        "notifications_enabled": not settings.DISABLE_SLACK_NOTIFICATIONS,
        "environment": settings.ENVIRONMENT,
        "error_reporting": is_sentry_enabled(),
        "available_reminders": ["14 days", "7 days", "3 days", "Day of closing"],
    }


def get_cron_status(registry: CircuitBreakerRegistry) -> Dict[str, Any]:
    job = scheduler.get_job("job_closing_reminders") if scheduler.running else None
    return {
        "is_running": scheduler.running,
        "is_processing": is_processing(),
        "schedule": f"Daily at {settings.REMINDER_HOUR}:00 {settings.REMINDER_TIMEZONE}",
        "next_run_at": job.next_run_time.isoformat() if job and job.next_run_time else None,
        "last_run": dict(_last_run),
        "notification_status": get_notification_status(),
        "circuit_breakers": registry.snapshot(),
    }


def start_scheduler(registry: CircuitBreakerRegistry):
    # Job configuration for durability:
    # - max_instances=1: Prevent overlapping runs
    # - misfire_grace_time: Allow late execution if within grace period (then skip)
    # - coalesce=True: If multiple runs were missed, only run once when catching up

    if settings.DISABLE_SLACK_NOTIFICATIONS:
        logger.warning("DISABLED - DISABLE_SLACK_NOTIFICATIONS=true, reminders will only be logged")

    # Closing reminders once a day; 1 hour grace
    scheduler.add_job(
        job_closing_reminders,
        CronTrigger(hour=settings.REMINDER_HOUR, minute=0),
        id="job_closing_reminders",
        kwargs={"registry": registry},
        max_instances=1,
        misfire_grace_time=3600,  # 1 hour
        coalesce=True,
        replace_existing=True,
    )

    # Ledger pruning at 3 AM; not time-critical
    scheduler.add_job(
        job_prune_sent_notifications,
        CronTrigger(hour=3, minute=0),
        id="job_prune_sent_notifications",
        max_instances=1,
        misfire_grace_time=7200,  # 2 hours
        coalesce=True,
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started (with misfire handling)",
        jobs=[
            f"job_closing_reminders: {settings.REMINDER_HOUR}:00 {settings.REMINDER_TIMEZONE} daily, 1h grace",
            "job_prune_sent_notifications: 3:00 daily, 2h grace",
        ],
    )


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
