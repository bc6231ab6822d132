"""
Closing-date reminder engine.

Once per day, for every transaction with a closing date and a Slack channel:

1. days_until = closing date - today, both at local midnight (today -> 0)
2. owner's preferences; parent toggle off -> the whole transaction is disabled
3. for each rule due today: kind disabled -> disabled; already sent today ->
   skipped; else send via circuit breaker -> retry -> timeout, record on
   success (sent) or count the failure (errors)

A failure on one transaction or rule never aborts the run.

Runs must not overlap: deduplication is check-then-act unless
`claim_before_send` is on. app.core.scheduler serializes scheduled and
manual runs.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlmodel import Session, select

from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import Settings, settings as default_settings
from app.core.errors import ErrorHandler
from app.core.logging_config import get_logger
from app.core.resilience import guarded_call
from app.core.typing import col, utc_now
from app.models.notification import ReminderKind
from app.models.transaction import Transaction
from app.services.dedup import NotificationDeduplicator, to_local
from app.services.preferences import PreferenceResolver
from app.services.slack import SLACK_LABEL, SlackClient

logger = get_logger(__name__)

SendPrimitive = Callable[[str, str], Awaitable[Dict[str, Any]]]
MessageBuilder = Callable[[str, date], str]


def format_closing_date(value: date) -> str:
    """e.g. 'Monday, June 10, 2024'"""
    return f"{value:%A, %B} {value.day}, {value.year}"


@dataclass(frozen=True)
class ReminderRule:
    days_before_target: int
    notification_type: str
    preference_key: ReminderKind
    message_builder: MessageBuilder


REMINDER_RULES: List[ReminderRule] = [
    ReminderRule(
        days_before_target=14,
        notification_type="closing_14_days",
        preference_key=ReminderKind.REMINDER_14_DAYS,
        message_builder=lambda addr, d: (
            f"🗓️ *Closing Reminder*\n\n*{addr}* is closing in *14 days* on {format_closing_date(d)}.\n\n"
            "Confirm financing, appraisal and inspection milestones are on track."
        ),
    ),
    ReminderRule(
        days_before_target=7,
        notification_type="closing_7_days",
        preference_key=ReminderKind.REMINDER_7_DAYS,
        message_builder=lambda addr, d: (
            f"📆 *Closing Reminder*\n\n*{addr}* is closing in *1 week* on {format_closing_date(d)}.\n\n"
            "Check in with the title company and lender."
        ),
    ),
    ReminderRule(
        days_before_target=3,
        notification_type="closing_3_days",
        preference_key=ReminderKind.REMINDER_3_DAYS,
        message_builder=lambda addr, d: (
            f"📅 *Closing Reminder*\n\n*{addr}* is closing in *3 days* on {format_closing_date(d)}.\n\n"
            "Final preparations should be underway."
        ),
    ),
    ReminderRule(
        days_before_target=0,
        notification_type="closing_day_of",
        preference_key=ReminderKind.REMINDER_DAY_OF,
        message_builder=lambda addr, d: (
            f"🎉 *Closing Day!*\n\n*{addr}* is closing *today*!\n\nGood luck with the closing!"
        ),
    ),
]


@dataclass
class RunStats:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    disabled: int = 0
    errors: int = 0
    suppressed: int = 0  # due reminders withheld by the kill switch

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def days_until(target: date, now: datetime, tz: tzinfo) -> int:
    """Whole days from the local date of `now` to `target`; 0 on the day itself."""
    return (target - to_local(now, tz).date()).days


@dataclass(frozen=True)
class ReminderTarget:
    """
    Plain copy of the Transaction fields a run reads.

    Commits and rollbacks during a run expire ORM instances. Targets never
    reload, so a row edited or deleted mid-run cannot break the loop.
    """

    transaction_id: str
    property_address: str
    closing_date: date
    channel_id: str
    user_id: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> Optional["ReminderTarget"]:
        if transaction.closing_date is None or not transaction.slack_channel_id:
            return None
        return cls(
            transaction_id=transaction.id,
            property_address=transaction.property_address,
            closing_date=transaction.closing_date,
            channel_id=transaction.slack_channel_id,
            user_id=transaction.user_id,
        )


def load_eligible_transactions(session: Session) -> Sequence[Transaction]:
    return session.exec(
        select(Transaction).where(
            col(Transaction.closing_date).is_not(None),
            col(Transaction.slack_channel_id).is_not(None),
        )
    ).all()


def _message_id(result: Any) -> Optional[str]:
    if isinstance(result, dict):
        return result.get("ts") or result.get("id")
    return None


class ReminderScheduler:
    def __init__(
        self,
        session: Session,
        registry: CircuitBreakerRegistry,
        send: Optional[SendPrimitive] = None,
        config: Optional[Settings] = None,
        rules: Optional[Sequence[ReminderRule]] = None,
        tz: Optional[tzinfo] = None,
        claim_before_send: bool = False,
    ):
        self.session = session
        self.registry = registry
        self.config = config or default_settings
        self.rules = list(REMINDER_RULES if rules is None else rules)
        self.tz = tz or ZoneInfo(self.config.REMINDER_TIMEZONE)
        self.claim_before_send = claim_before_send
        self.preferences = PreferenceResolver(session)

        if send is None:
            client = SlackClient(token=self.config.SLACK_BOT_TOKEN, api_base=self.config.SLACK_API_BASE)
            self._send_configured = client.configured
            send = client.post_message
        else:
            self._send_configured = True
        self.send = send

    async def process_due_reminders(
        self,
        now: Optional[datetime] = None,
        bypass_kill_switch: bool = False,
    ) -> RunStats:
        """
        Evaluate every eligible transaction once and deliver due reminders.

        With the kill switch on (and not bypassed) the run is a dry run: due
        reminders are logged and counted as `suppressed`, nothing is sent or
        recorded.
        """
        stats = RunStats()
        now = now or utc_now()
        dry_run = self.config.DISABLE_SLACK_NOTIFICATIONS and not bypass_kill_switch

        if dry_run:
            logger.warning("DISABLED - DISABLE_SLACK_NOTIFICATIONS=true, logging due reminders only")
        elif not self._send_configured:
            logger.warning("Bot token not configured, skipping closing reminders")
            return stats

        dedup = NotificationDeduplicator(self.session, now, self.tz)
        logger.info("Starting notification check", date=dedup.today.isoformat(), bypass=bypass_kill_switch)

        targets: List[ReminderTarget] = []
        with ErrorHandler("load_transactions") as loading:
            for transaction in load_eligible_transactions(self.session):
                target = ReminderTarget.from_transaction(transaction)
                if target is not None:
                    targets.append(target)
        if loading.failed:
            stats.errors += 1
            return stats

        logger.info("Found transactions to check", count=len(targets))

        for target in targets:
            stats.processed += 1
            with ErrorHandler("process_transaction", context={"transaction_id": target.transaction_id}) as handler:
                await self._process_transaction(target, now, dedup, stats, dry_run)
            if handler.failed:
                self.session.rollback()
                stats.errors += 1

        logger.info("Notification check complete", **stats.as_dict())
        return stats

    async def _process_transaction(
        self,
        target: ReminderTarget,
        now: datetime,
        dedup: NotificationDeduplicator,
        stats: RunStats,
        dry_run: bool,
    ) -> None:
        prefs = self.preferences.resolve(target.user_id)

        if not prefs.master_reminders_enabled:
            logger.info(
                "SKIPPED (closing reminders disabled)",
                address=target.property_address,
                user_id=target.user_id or "(none)",
            )
            stats.disabled += 1
            return

        remaining = days_until(target.closing_date, now, self.tz)
        logger.info("Checking days until closing", address=target.property_address, days_until=remaining)

        for rule in self.rules:
            if rule.days_before_target != remaining:
                continue

            if not prefs.is_enabled(rule.preference_key):
                logger.info(
                    "SKIPPED (setting disabled)",
                    setting=rule.preference_key.value,
                    address=target.property_address,
                )
                stats.disabled += 1
                continue

            context = {"transaction_id": target.transaction_id, "notification_type": rule.notification_type}
            with ErrorHandler("deliver_reminder", context=context) as handler:
                outcome = await self._deliver(target, rule, dedup, dry_run)
            if handler.failed:
                self.session.rollback()
                stats.errors += 1
                continue

            setattr(stats, outcome, getattr(stats, outcome) + 1)

    async def _deliver(
        self,
        target: ReminderTarget,
        rule: ReminderRule,
        dedup: NotificationDeduplicator,
        dry_run: bool,
    ) -> str:
        """Returns the RunStats field to bump: sent, skipped or suppressed."""
        key = (target.transaction_id, rule.notification_type, target.channel_id)

        if dry_run or not self.claim_before_send:
            if dedup.was_sent_today(*key):
                logger.info(
                    "SKIPPED (already sent today)",
                    notification_type=rule.notification_type,
                    address=target.property_address,
                )
                return "skipped"
        elif not dedup.claim(*key):
            logger.info(
                "SKIPPED (already claimed today)",
                notification_type=rule.notification_type,
                address=target.property_address,
            )
            return "skipped"

        message = rule.message_builder(target.property_address, target.closing_date)

        if dry_run:
            logger.warning(
                "Would send closing reminder",
                notification_type=rule.notification_type,
                channel_id=target.channel_id,
                message=message,
            )
            return "suppressed"

        channel_id = target.channel_id
        try:
            result = await guarded_call(
                self.registry.get(SLACK_LABEL),
                lambda: self.send(channel_id, message),
                timeout=self.config.SEND_TIMEOUT_SECONDS,
                max_retries=self.config.SEND_MAX_RETRIES,
                base_delay=self.config.SEND_BASE_DELAY_SECONDS,
            )
        except Exception:
            if self.claim_before_send:
                dedup.release(*key)
            raise

        if self.claim_before_send:
            dedup.confirm(*key, message_ts=_message_id(result))
        else:
            dedup.record_sent(*key, message_ts=_message_id(result))

        logger.info("SENT", notification_type=rule.notification_type, address=target.property_address)
        return "sent"
