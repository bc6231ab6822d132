#!/usr/bin/env python3
"""Create the transactions, notification_settings and sent_notifications tables."""

from sqlmodel import SQLModel

from app.core.config import settings
from app.db import create_db_and_tables

if __name__ == "__main__":
    print(f"Creating tables on {settings.DATABASE_URL.split('@')[-1]} ...")
    try:
        create_db_and_tables()
    except Exception as e:
        print(f"Error creating tables: {e}")
        raise SystemExit(1)
    print(f"Tables ready: {', '.join(sorted(SQLModel.metadata.tables))}")
