"""
Notification Models

- NotificationSettings: per-user Slack notification toggles. `closing_reminders`
  is the parent toggle for every reminder_* schedule flag.
- SentNotification: append-only delivery ledger used to guarantee at most one
  send per (transaction, notification type, channel) per local calendar day.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.typing import TZDateTime, utc_now


class ReminderKind(str, Enum):
    """Per-schedule reminder toggles (column names on NotificationSettings)."""

    REMINDER_14_DAYS = "reminder_14_days"
    REMINDER_7_DAYS = "reminder_7_days"
    REMINDER_3_DAYS = "reminder_3_days"
    REMINDER_DAY_OF = "reminder_day_of"


class NotificationSettings(SQLModel, table=True):
    __tablename__ = "notification_settings"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(unique=True, index=True)

    # Notification categories (all opt-in)
    document_uploads: bool = Field(default=False)
    closing_reminders: bool = Field(default=False)  # Parent toggle for reminder schedule
    marketing_assets: bool = Field(default=False)

    # Reminder schedule; only effective while closing_reminders is on
    reminder_14_days: bool = Field(default=False)
    reminder_7_days: bool = Field(default=False)
    reminder_3_days: bool = Field(default=False)
    reminder_day_of: bool = Field(default=False)

    created_at: datetime = Field(default_factory=utc_now, sa_type=TZDateTime)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=TZDateTime)


class NotificationSettingsUpdate(SQLModel):
    """Partial update; omitted fields are left unchanged."""

    document_uploads: Optional[bool] = None
    closing_reminders: Optional[bool] = None
    marketing_assets: Optional[bool] = None
    reminder_14_days: Optional[bool] = None
    reminder_7_days: Optional[bool] = None
    reminder_3_days: Optional[bool] = None
    reminder_day_of: Optional[bool] = None


class NotificationPreferenceRead(SQLModel):
    user_id: str
    closing_reminders: bool
    document_uploads: bool
    marketing_assets: bool
    reminder_14_days: bool
    reminder_7_days: bool
    reminder_3_days: bool
    reminder_day_of: bool


class SentNotification(SQLModel, table=True):
    __tablename__ = "sent_notifications"
    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "notification_type",
            "channel_id",
            "sent_on",
            name="uq_sent_notification_per_day",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: str = Field(index=True)
    notification_type: str = Field(max_length=50)  # closing_3_days, closing_day_of, ...
    channel_id: str = Field(max_length=100)
    sent_at: datetime = Field(default_factory=utc_now, sa_type=TZDateTime, index=True)  # UTC
    sent_on: date  # local calendar day of sent_at
    message_ts: Optional[str] = Field(default=None, max_length=50)  # Slack message timestamp
