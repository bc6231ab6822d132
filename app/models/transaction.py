"""
Transaction Model - a real-estate deal with an upcoming closing.

Only the fields the reminder engine reads are modelled here; transactions are
created and edited elsewhere. A transaction is eligible for closing reminders
once it has both a closing date and a Slack channel.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from app.core.typing import TZDateTime, utc_now


def _new_id() -> str:
    return uuid.uuid4().hex


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: str = Field(default_factory=_new_id, primary_key=True)
    property_address: str
    closing_date: Optional[date] = Field(default=None, index=True)
    slack_channel_id: Optional[str] = Field(default=None, max_length=100)

    # Owner; controls notification preferences for this deal
    user_id: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utc_now, sa_type=TZDateTime)
