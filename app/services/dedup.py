"""
Same-day delivery deduplication against the sent_notifications ledger.

A deduplicator is built once per scheduler run. "Today" is the local calendar
day of the run's `now`, computed at construction, so every check in the run
uses the same [local midnight, next local midnight) window.

Two ways to use it:

- check-then-act (default): `was_sent_today()` before sending,
  `record_sent()` after a successful send. Not atomic: two overlapping runs
  can both pass the check. Safe only with a single active scheduler.
- claim-first: `claim()` inserts the ledger row before sending and relies on
  the (transaction, type, channel, day) unique constraint, so only one
  claimant wins. `release()` drops the claim when the send fails and
  `confirm()` attaches the Slack message timestamp when it succeeds.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.logging_config import get_logger
from app.core.typing import col, to_utc
from app.models.notification import SentNotification

logger = get_logger(__name__)


def to_local(now: datetime, tz: tzinfo) -> datetime:
    """Express `now` in `tz`. Naive values are read as local wall-clock time."""
    if now.tzinfo is None:
        return now.replace(tzinfo=tz)
    return now.astimezone(tz)


def local_day_window(now: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """[local midnight, next local midnight) of `now`, as aware datetimes."""
    today = to_local(now, tz).date()
    start = datetime.combine(today, time.min, tzinfo=tz)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


class NotificationDeduplicator:
    def __init__(self, session: Session, now: datetime, tz: tzinfo):
        self.session = session
        self.now = to_local(now, tz)
        self.today: date = self.now.date()
        start, end = local_day_window(now, tz)
        self._window_start = to_utc(start)
        self._window_end = to_utc(end)

    def _today_query(self, transaction_id: str, notification_type: str, channel_id: str):
        return select(SentNotification).where(
            SentNotification.transaction_id == transaction_id,
            SentNotification.notification_type == notification_type,
            SentNotification.channel_id == channel_id,
            col(SentNotification.sent_at) >= self._window_start,
            col(SentNotification.sent_at) < self._window_end,
        )

    def was_sent_today(self, transaction_id: str, notification_type: str, channel_id: str) -> bool:
        existing = self.session.exec(
            self._today_query(transaction_id, notification_type, channel_id).limit(1)
        ).first()
        return existing is not None

    def _new_row(
        self,
        transaction_id: str,
        notification_type: str,
        channel_id: str,
        message_ts: Optional[str] = None,
    ) -> SentNotification:
        return SentNotification(
            transaction_id=transaction_id,
            notification_type=notification_type,
            channel_id=channel_id,
            sent_at=to_utc(self.now),
            sent_on=self.today,
            message_ts=message_ts,
        )

    def record_sent(
        self,
        transaction_id: str,
        notification_type: str,
        channel_id: str,
        message_ts: Optional[str] = None,
    ) -> None:
        """Append a ledger row for a delivery that already happened."""
        self.session.add(self._new_row(transaction_id, notification_type, channel_id, message_ts))
        try:
            self.session.commit()
        except IntegrityError:
            # Another run recorded the same delivery first; the ledger already blocks repeats.
            self.session.rollback()
            logger.warning(
                "Delivery already recorded by another run",
                transaction_id=transaction_id,
                notification_type=notification_type,
                channel_id=channel_id,
            )

    def claim(self, transaction_id: str, notification_type: str, channel_id: str) -> bool:
        """
        Insert-or-ignore the ledger row for today.

        Returns True if this caller owns the delivery, False if it was already
        claimed or sent today.
        """
        self.session.add(self._new_row(transaction_id, notification_type, channel_id))
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return False
        return True

    def confirm(self, transaction_id: str, notification_type: str, channel_id: str, message_ts: Optional[str]) -> None:
        row = self.session.exec(self._today_query(transaction_id, notification_type, channel_id)).first()
        if row is None or message_ts is None:
            return
        row.message_ts = message_ts
        self.session.add(row)
        self.session.commit()

    def release(self, transaction_id: str, notification_type: str, channel_id: str) -> None:
        """Drop an unconfirmed claim so a later run can retry the delivery."""
        rows = self.session.exec(self._today_query(transaction_id, notification_type, channel_id)).all()
        for row in rows:
            if row.message_ts is None:
                self.session.delete(row)
        self.session.commit()

    def prune_before(self, cutoff: datetime) -> int:
        """Delete ledger rows older than `cutoff`. Only same-day rows matter for dedup."""
        result = self.session.execute(
            delete(SentNotification)
            .where(col(SentNotification.sent_at) < to_utc(cutoff))
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        deleted = result.rowcount or 0
        logger.info("Pruned sent notification ledger", deleted=deleted, cutoff=cutoff.isoformat())
        return deleted
