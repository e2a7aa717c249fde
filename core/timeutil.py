"""
Naive-UTC time helpers shared by models and the sync engine.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def elapsed_ms(start: datetime, end: Optional[datetime] = None) -> int:
    return int(((end or utcnow()) - start).total_seconds() * 1000)
