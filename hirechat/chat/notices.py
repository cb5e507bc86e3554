# =============================================================================
# File: hirechat/chat/notices.py
# Description: Dismissible user-visible notices (toast equivalents)
# =============================================================================

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from hirechat.chat.enums import NoticeLevel
from hirechat.utils.datetime_utils import utc_now

log = logging.getLogger("hirechat.chat.notices")

_notice_ids = itertools.count(1)


@dataclass(frozen=True)
class Notice:
    """A non-blocking message for the user."""
    title: str
    detail: str = ""
    level: NoticeLevel = NoticeLevel.ERROR
    id: int = field(default_factory=lambda: next(_notice_ids))
    created_at: datetime = field(default_factory=utc_now)


class NoticeBoard:
    """Collects notices until the UI dismisses them."""

    def __init__(self) -> None:
        self._notices: List[Notice] = []

    def push(self, title: str, detail: str = "", level: NoticeLevel = NoticeLevel.ERROR) -> Notice:
        notice = Notice(title=title, detail=detail, level=level)
        self._notices.append(notice)
        log.info(f"Notice [{level.value}] {title}: {detail}")
        return notice

    def dismiss(self, notice_id: int) -> bool:
        for index, notice in enumerate(self._notices):
            if notice.id == notice_id:
                del self._notices[index]
                return True
        return False

    def clear(self) -> None:
        self._notices.clear()

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    @property
    def latest(self) -> Optional[Notice]:
        return self._notices[-1] if self._notices else None

    def __len__(self) -> int:
        return len(self._notices)
