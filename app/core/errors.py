"""
Error taxonomy for outbound calls plus unified error reporting.

Exception hierarchy (all outbound-call failures derive from ExternalServiceError):
- CallTimeoutError: deadline exceeded (also a builtin TimeoutError)
- CircuitOpenError: dependency presumed down, call never attempted
- RetryExhaustedError: wraps the last failure after all attempts
- SendError: transport-level failure reported by the dependency
- ConfigurationError: missing required credential or label

Reporting:
- Structured logging with run context enrichment
- Sentry tracking when a DSN is configured

Usage:
    capture_exception(exc, context={"transaction_id": "tx_1"})
    capture_message("Circuit opened", level="warning", tags={"circuit": "slack-api"})

    with ErrorHandler("send_reminder", context={"channel_id": channel_id}):
        await send(...)
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextlib import contextmanager
import structlog

from app.core.context import get_run_id, get_context_dict

logger = structlog.get_logger(__name__)

__all__ = [
    "ExternalServiceError",
    "CallTimeoutError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "SendError",
    "ConfigurationError",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
    "is_sentry_enabled",
    "error_boundary",
]


class ExternalServiceError(Exception):
    """Base class for failures of a guarded outbound call."""

    def __init__(self, label: str, message: str):
        super().__init__(message)
        self.label = label


class CallTimeoutError(ExternalServiceError, TimeoutError):
    def __init__(self, label: str, timeout: float):
        super().__init__(label, f"{label} timed out after {timeout:g}s")
        self.timeout = timeout


class CircuitOpenError(ExternalServiceError):
    def __init__(self, label: str, retry_after: Optional[float] = None):
        super().__init__(label, f"Circuit breaker open for {label}")
        self.retry_after = retry_after


class RetryExhaustedError(ExternalServiceError):
    def __init__(self, label: str, attempts: int, last_error: BaseException):
        super().__init__(label, f"{label} failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class SendError(ExternalServiceError):
    """The dependency answered, but reported the send as failed."""

    def __init__(self, label: str, error: str, status_code: Optional[int] = None):
        super().__init__(label, f"{label} send failed: {error}")
        self.error = error
        self.status_code = status_code


class ConfigurationError(Exception):
    pass


_sentry_initialized: bool = False


def init_sentry(dsn: str, environment: str = "production", release: Optional[str] = None) -> bool:
    """
    Turn on Sentry reporting. Without a DSN this is a logged no-op.

    Returns True when events will be forwarded to Sentry.
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import logging
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release,
            traces_sample_rate=0.0,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_before_send,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False

    _sentry_initialized = True
    logger.info("Sentry initialized", environment=environment, release=release)
    return True


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Tag every event with the current run."""
    run_id = get_run_id()
    if run_id:
        event.setdefault("tags", {})["run_id"] = run_id
    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def _report_to_sentry(send, extras: Dict[str, Any], level: str, tags=None, fingerprint=None) -> Optional[str]:
    if not is_sentry_enabled():
        return None
    try:
        import sentry_sdk

        with sentry_sdk.push_scope() as scope:
            for key, value in extras.items():
                if value is not None:
                    scope.set_extra(key, value)
            for key, value in (tags or {}).items():
                scope.set_tag(key, value)
            if fingerprint:
                scope.fingerprint = fingerprint
            scope.level = level
            return send(sentry_sdk)
    except Exception as e:
        logger.warning("Failed to report to Sentry", error=str(e))
        return None


def _enriched(context: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    return {
        **get_context_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
        **(context or {}),
    }


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Log `exc` with the run context and forward it to Sentry when enabled.

    Returns the Sentry event id, or None when nothing was sent.
    """
    extras = _enriched(context, error_type=type(exc).__name__)
    logger.error("Exception captured", exc_info=exc, **extras)
    return _report_to_sentry(
        lambda sdk: sdk.capture_exception(exc), extras, level, tags=tags, fingerprint=fingerprint
    )


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Non-exception events: breaker state changes, kill-switch notices."""
    extras = _enriched(context)
    getattr(logger, level, logger.info)(message, **extras)
    return _report_to_sentry(lambda sdk: sdk.capture_message(message, level=level), extras, level, tags=tags)


class ErrorHandler:
    """
    Catch, report and suppress an exception raised inside the block.

    After the block, `failed` tells the caller whether to count an error:

        with ErrorHandler("process_transaction", context={"transaction_id": tx.id}) as handler:
            ...
        if handler.failed:
            stats.errors += 1

    `reraise=True` reports and then propagates. `capture=False` only logs a
    warning. BaseExceptions that are not Exceptions (cancellation, exit) are
    never touched.
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
        fingerprint: Optional[list[str]] = None,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.fingerprint = fingerprint or [operation]
        self.error: Optional[BaseException] = None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None or not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                fingerprint=self.fingerprint + [type(exc_val).__name__],
            )
        else:
            logger.warning(
                "Operation failed",
                operation=self.operation,
                error=str(exc_val),
                error_type=type(exc_val).__name__,
                **self.context,
            )

        return not self.reraise

    @property
    def failed(self) -> bool:
        return self.error is not None


@contextmanager
def error_boundary(operation: str, **context):
    """
    `ErrorHandler` for blocks whose failure only needs reporting.

        with error_boundary("prune_ledger", cutoff=cutoff.isoformat()):
            dedup.prune_before(cutoff)
    """
    with ErrorHandler(operation, context=context) as handler:
        yield handler
