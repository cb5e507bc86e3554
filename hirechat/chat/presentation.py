# =============================================================================
# File: hirechat/chat/presentation.py
# Description: View helpers for the active room message list
# =============================================================================

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import List, Optional, Tuple

from hirechat.chat.read_models import ChatMessage
from hirechat.utils.datetime_utils import utc_now


def day_label(day: date, today: date) -> str:
    """'Today', 'Yesterday' or 'Month D, YYYY'."""
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day.strftime('%B')} {day.day}, {day.year}"


def group_messages_by_day(
        messages: List[ChatMessage],
        now: Optional[datetime] = None,
        tz: Optional[tzinfo] = None,
) -> List[Tuple[str, List[ChatMessage]]]:
    """
    Group an already ordered message list under day headers.

    Args:
        messages: Messages in display order
        now: Reference time for Today/Yesterday (defaults to current UTC time)
        tz: Viewer timezone used to cut days (defaults to UTC)

    Returns:
        List of (label, messages) in display order
    """
    now = now or utc_now()
    today = now.astimezone(tz).date() if tz else now.date()

    groups: List[Tuple[str, List[ChatMessage]]] = []
    current_day: Optional[date] = None
    for message in messages:
        day = message.created_at.astimezone(tz).date() if tz else message.created_at.date()
        if day != current_day:
            groups.append((day_label(day, today), []))
            current_day = day
        groups[-1][1].append(message)
    return groups
