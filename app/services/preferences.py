"""
Notification preference resolution.

Every notification category is opt-in: a user with no stored settings gets
all-false preferences. `closing_reminders` is the parent toggle for the
reminder schedule; while it is off no reminder kind is enabled, whatever the
stored per-kind flags say, and turning it off clears those flags in the same
update.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlmodel import Session, select

from app.core.logging_config import get_logger
from app.core.typing import utc_now
from app.models.notification import (
    NotificationPreferenceRead,
    NotificationSettings,
    NotificationSettingsUpdate,
    ReminderKind,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotificationPreference:
    """Resolved, effective preferences for one user."""

    user_id: str
    master_reminders_enabled: bool = False
    enabled_reminder_kinds: frozenset[ReminderKind] = field(default_factory=frozenset)
    document_upload_notifications_enabled: bool = False
    marketing_asset_notifications_enabled: bool = False

    def is_enabled(self, kind: ReminderKind) -> bool:
        return self.master_reminders_enabled and kind in self.enabled_reminder_kinds

    def to_read(self) -> NotificationPreferenceRead:
        return NotificationPreferenceRead(
            user_id=self.user_id,
            closing_reminders=self.master_reminders_enabled,
            document_uploads=self.document_upload_notifications_enabled,
            marketing_assets=self.marketing_asset_notifications_enabled,
            **{kind.value: kind in self.enabled_reminder_kinds for kind in ReminderKind},
        )


def _from_row(row: NotificationSettings) -> NotificationPreference:
    master = bool(row.closing_reminders)
    kinds = frozenset(kind for kind in ReminderKind if master and getattr(row, kind.value))
    return NotificationPreference(
        user_id=row.user_id,
        master_reminders_enabled=master,
        enabled_reminder_kinds=kinds,
        document_upload_notifications_enabled=bool(row.document_uploads),
        marketing_asset_notifications_enabled=bool(row.marketing_assets),
    )


class PreferenceResolver:
    def __init__(self, session: Session):
        self.session = session

    def _get_row(self, user_id: str) -> Optional[NotificationSettings]:
        return self.session.exec(
            select(NotificationSettings).where(NotificationSettings.user_id == user_id)
        ).first()

    def resolve(self, user_id: Optional[str]) -> NotificationPreference:
        """Effective preferences for `user_id`; all-false when nothing is stored."""
        if not user_id:
            return NotificationPreference(user_id="")

        row = self._get_row(user_id)
        if row is None:
            return NotificationPreference(user_id=user_id)
        return _from_row(row)

    def update(self, user_id: str, changes: NotificationSettingsUpdate) -> NotificationPreference:
        """
        Apply a partial update and return the resulting preferences.

        Setting closing_reminders to False forces every reminder kind off.
        """
        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        if values.get("closing_reminders") is False:
            for kind in ReminderKind:
                values[kind.value] = False

        row = self._get_row(user_id)
        if row is None:
            row = NotificationSettings(user_id=user_id)

        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = utc_now()

        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)

        logger.info("Notification settings updated", user_id=user_id, changes=values)
        return _from_row(row)
