"""
Notifications API - operator diagnostics and per-user preferences.

All endpoints require the X-Admin-Token header.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from app.api import deps
from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.scheduler import get_cron_status, trigger_notifications_now
from app.db import get_session
from app.models.notification import NotificationPreferenceRead, NotificationSettingsUpdate
from app.services.preferences import PreferenceResolver
from app.services.slack import send_test_notification

router = APIRouter(dependencies=[Depends(deps.require_admin)])


class TriggerRequest(BaseModel):
    bypass_disable: bool = False


class TestNotificationRequest(BaseModel):
    channel_id: str


@router.get("/status")
def notification_status(breakers: CircuitBreakerRegistry = Depends(deps.get_breakers)) -> Any:
    """Scheduler, kill switch and circuit breaker status."""
    return get_cron_status(breakers)


@router.post("/trigger")
async def trigger_notifications(
    body: TriggerRequest,
    breakers: CircuitBreakerRegistry = Depends(deps.get_breakers),
) -> Any:
    """
    Run the closing-reminder pass now.
    With bypass_disable the kill switch is ignored for this run.
    """
    return await trigger_notifications_now(breakers, bypass_disable=body.bypass_disable)


@router.post("/test")
async def test_notification(
    body: TestNotificationRequest,
    breakers: CircuitBreakerRegistry = Depends(deps.get_breakers),
) -> Any:
    return await send_test_notification(breakers, body.channel_id)


@router.get("/preferences/{user_id}", response_model=NotificationPreferenceRead)
def read_preferences(user_id: str, session: Session = Depends(get_session)) -> Any:
    return PreferenceResolver(session).resolve(user_id).to_read()


@router.put("/preferences/{user_id}", response_model=NotificationPreferenceRead)
def update_preferences(
    user_id: str,
    changes: NotificationSettingsUpdate,
    session: Session = Depends(get_session),
) -> Any:
    """
    Partial update. Turning closing_reminders off clears every reminder schedule.
    """
    return PreferenceResolver(session).update(user_id, changes).to_read()
