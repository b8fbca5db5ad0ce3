"""Column helpers shared by the ORM models."""

from datetime import datetime, timezone

from sqlalchemy import Numeric

# Currency amounts: two decimal places, always Decimal on the Python side.
Money = Numeric(12, 2, asdecimal=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
