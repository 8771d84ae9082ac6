"""Datetime utilities for timestamps and local date keys.

Event rows are stamped in UTC, while daily metrics are keyed by the
restaurant's local calendar date.

Usage:
    from kitchen_ledger.utils.datetime_utils import utc_now, get_local_date_string

    timestamp = utc_now()
    date_key = get_local_date_string()  # "2025-01-15"
"""

from datetime import date, datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime.

    Returns:
        Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def get_local_date_string(moment: Optional[Union[datetime, date]] = None) -> str:
    """Return the local calendar date as a YYYY-MM-DD key.

    Aware datetimes are converted to local time first; naive datetimes
    and plain dates are taken as already local.

    Args:
        moment: Datetime or date to format (defaults to now)

    Returns:
        Date key string, e.g. "2025-01-15"
    """
    if moment is None:
        moment = datetime.now()
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone()
        moment = moment.date()
    return moment.strftime("%Y-%m-%d")


def ensure_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Return a timezone-aware UTC datetime.

    Naive datetimes are taken as UTC, which is how event timestamps are
    stored and read back.

    Args:
        moment: Datetime to normalize (None passes through)

    Returns:
        UTC datetime with timezone info, or None
    """
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
