from .transaction import Transaction
from .notification import (
    NotificationSettings,
    NotificationSettingsUpdate,
    NotificationPreferenceRead,
    ReminderKind,
    SentNotification,
)

__all__ = [
    "Transaction",
    "NotificationSettings",
    "NotificationSettingsUpdate",
    "NotificationPreferenceRead",
    "ReminderKind",
    "SentNotification",
]
