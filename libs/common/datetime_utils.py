"""Datetime utilities.

Timestamps are timezone-aware UTC. Business dates (effective dates, join and
leave dates, cancellation dates) are plain ``datetime.date`` values and are
never converted through a timestamp, so no time zone can shift them by a day.

Usage:
    from libs.common.datetime_utils import utc_now

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
"""

import re
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from libs.common.config import get_settings

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime:
    """Return timezone-aware UTC datetime.

    This replaces the deprecated datetime.utcnow() which returns naive datetimes.
    Always use this for timestamps in the database.
    """
    return datetime.now(timezone.utc)


def local_today() -> date:
    """Today's calendar date in the configured club time zone."""
    return datetime.now(ZoneInfo(get_settings().TIMEZONE)).date()


def parse_iso_date(value: Union[date, str, None]) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string into a date.

    ``date`` instances and ``None`` pass through. Datetimes are rejected so a
    timestamp is never silently truncated. Raises ``ValueError`` on anything
    else.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        raise ValueError(f"Expected a calendar date, got timestamp {value!r}")
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not ISO_DATE_PATTERN.match(value):
        raise ValueError(f"Date must be in YYYY-MM-DD format, got {value!r}")
    return date.fromisoformat(value)
