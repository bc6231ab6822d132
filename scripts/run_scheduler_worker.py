#!/usr/bin/env python3
"""Dedicated scheduler process (run exactly one of these per deployment)."""

import asyncio

from app.core.circuit_breaker import build_default_registry
from app.core.config import validate_environment
from app.core.logging_config import get_logger
from app.core.scheduler import start_scheduler
from app.db import create_db_and_tables

logger = get_logger("scheduler_worker")

async def main():
    logger.info("Starting dedicated scheduler worker...")
    validate_environment()
    create_db_and_tables()

    start_scheduler(build_default_registry())
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        logger.info("Scheduler worker shutting down.")

if __name__ == "__main__":
    asyncio.run(main())
