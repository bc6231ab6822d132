#!/usr/bin/env python3
"""
Run the closing-reminder pass once from the command line.

Usage:
    python -m scripts.trigger_reminders
    python -m scripts.trigger_reminders --bypass-disable   # ignore DISABLE_SLACK_NOTIFICATIONS
    python -m scripts.trigger_reminders --status
"""

import argparse
import asyncio
import json

from app.core.circuit_breaker import build_default_registry
from app.core.scheduler import get_cron_status, trigger_notifications_now


def main() -> int:
    parser = argparse.ArgumentParser(description="Run closing reminders now")
    parser.add_argument("--bypass-disable", action="store_true", help="Send even if the kill switch is set")
    parser.add_argument("--status", action="store_true", help="Print scheduler/notification status and exit")
    args = parser.parse_args()
    registry = build_default_registry()

    if args.status:
        print(json.dumps(get_cron_status(registry), indent=2, default=str))
        return 0

    result = asyncio.run(trigger_notifications_now(registry, bypass_disable=args.bypass_disable))
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
