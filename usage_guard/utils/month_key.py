"""Calendar-month bucketing for monthly quotas.

Allowances reset on the 1st of each month in UTC, not 30 days after first
use. Every quota path derives its bucket from ``month_key`` so rollovers
happen at the same instant everywhere.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def month_key(now: datetime | None = None) -> str:
    """Return the ``YYYY-MM`` bucket for ``now`` in the UTC calendar.

    Naive datetimes are interpreted as UTC; aware datetimes are converted.

    Examples:
        >>> month_key(datetime(2024, 1, 31, 23, 59, tzinfo=timezone.utc))
        '2024-01'
    """

    if now is None:
        now = utc_now()
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"
