"""
Run context management for log and error correlation.

Every reminder run (scheduled or manual) gets a run_id that is bound into
structlog's contextvars, so every log line and captured error emitted during
the run can be correlated. Uses contextvars for async-safe propagation.

Usage:
    run_id = start_run("scheduled")
    try:
        ...
    finally:
        clear_context()
"""

from contextvars import ContextVar
from typing import Optional
import uuid

import structlog

__all__ = [
    "generate_run_id",
    "start_run",
    "get_run_id",
    "get_trigger",
    "clear_context",
    "get_context_dict",
]

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_trigger: ContextVar[Optional[str]] = ContextVar("trigger", default=None)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Format: run_{16 hex chars}
    """
    return f"run_{uuid.uuid4().hex[:16]}"


def start_run(trigger: str) -> str:
    """Open a run context and bind it to structlog. Returns the run ID."""
    run_id = generate_run_id()
    _run_id.set(run_id)
    _trigger.set(trigger)
    structlog.contextvars.bind_contextvars(run_id=run_id, trigger=trigger)
    return run_id


def get_run_id() -> Optional[str]:
    return _run_id.get()


def get_trigger() -> Optional[str]:
    return _trigger.get()


def clear_context() -> None:
    """Clear run context so it doesn't leak into the next run."""
    _run_id.set(None)
    _trigger.set(None)
    structlog.contextvars.unbind_contextvars("run_id", "trigger")


def get_context_dict() -> dict:
    """Context variables as a dict, for enriching error reports."""
    return {
        "run_id": get_run_id(),
        "trigger": get_trigger(),
    }
