# =============================================================================
# File: hirechat/utils/datetime_utils.py
# Description: Datetime utilities with robust parsing of row timestamps
# =============================================================================

import re
from datetime import datetime, timezone, timedelta
from typing import Optional, Union

# PostgreSQL can render midnight as hour 24 ("2025-11-25 24:00:00")
_HOUR_24 = re.compile(r'^(\d{4}-\d{2}-\d{2})[ T]24:(\d{2}:\d{2}(?:\.\d+)?)')


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime has UTC timezone."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp_robust(
    timestamp: Union[str, datetime, None],
    fallback: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Parse a row timestamp coming either from the driver (datetime) or from a
    JSON change payload (ISO string).

    Handles:
    - ISO 8601 with or without 'Z'
    - PostgreSQL hour 24 format
    - Missing timezone (assumed UTC)

    Args:
        timestamp: Timestamp string or datetime object
        fallback: Returned when the value is missing or unparseable

    Returns:
        Timezone-aware datetime or fallback
    """
    if timestamp is None:
        return fallback

    if isinstance(timestamp, datetime):
        return ensure_utc(timestamp)

    if not isinstance(timestamp, str):
        return fallback

    ts = timestamp.strip().replace('Z', '+00:00')

    hour_24_match = _HOUR_24.match(ts)
    if hour_24_match:
        next_day = datetime.strptime(hour_24_match.group(1), '%Y-%m-%d') + timedelta(days=1)
        ts = f"{next_day.strftime('%Y-%m-%d')}T00:{hour_24_match.group(2)}{ts[hour_24_match.end():]}"

    try:
        return ensure_utc(datetime.fromisoformat(ts))
    except ValueError:
        pass

    for fmt in ('%Y-%m-%d %H:%M:%S.%f%z', '%Y-%m-%d %H:%M:%S%z', '%Y-%m-%d %H:%M:%S'):
        try:
            return ensure_utc(datetime.strptime(ts, fmt))
        except ValueError:
            continue

    return fallback


# =============================================================================
# EOF
# =============================================================================
