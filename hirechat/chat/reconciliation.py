# =============================================================================
# File: hirechat/chat/reconciliation.py
# Description: Ordered message log, provisional/confirmed reconciliation,
#              reaction set helpers and at-least-once dedup window
# =============================================================================

from __future__ import annotations

import bisect
import itertools
import logging
from collections import deque
from datetime import datetime
from typing import Deque, Dict, Iterator, List, Optional, Set, Tuple

from hirechat.chat.read_models import ChatMessage, Reaction, ReactionSummary

log = logging.getLogger("hirechat.chat.reconciliation")

_SortKey = Tuple[datetime, int]


class MessageLog:
    """
    Messages of one room ordered by creation timestamp.

    Ties are broken by insertion sequence, so two rows with the same
    timestamp keep the order in which this log first saw them. Ids are
    unique: adding a known id is a no-op.
    """

    def __init__(self) -> None:
        self._entries: List[Tuple[_SortKey, ChatMessage]] = []
        self._keys: Dict[str, _SortKey] = {}
        self._seq = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._keys

    def __iter__(self) -> Iterator[ChatMessage]:
        return (message for _, message in self._entries)

    @property
    def messages(self) -> List[ChatMessage]:
        return [message for _, message in self._entries]

    def get(self, message_id: str) -> Optional[ChatMessage]:
        key = self._keys.get(message_id)
        if key is None:
            return None
        return self._entries[self._index_of(key)][1]

    def add(self, message: ChatMessage) -> bool:
        """Insert in order. Returns False when the id is already present."""
        if message.id in self._keys:
            return False
        self._insert(message, next(self._seq))
        return True

    def replace(self, message: ChatMessage) -> bool:
        """Replace the message with the same id in place. False if absent."""
        key = self._keys.get(message.id)
        if key is None:
            return False
        del self._entries[self._index_of(key)]
        self._insert(message, key[1])
        return True

    def remove(self, message_id: str) -> Optional[ChatMessage]:
        key = self._keys.pop(message_id, None)
        if key is None:
            return None
        _, message = self._entries.pop(self._index_of(key))
        return message

    def provisional(self) -> List[ChatMessage]:
        """Unconfirmed local messages, oldest first."""
        return [m for m in self if m.is_provisional]

    def clear(self) -> None:
        self._entries.clear()
        self._keys.clear()

    def _insert(self, message: ChatMessage, seq: int) -> None:
        key = (message.created_at, seq)
        bisect.insort(self._entries, (key, message), key=lambda entry: entry[0])
        self._keys[message.id] = key

    def _index_of(self, key: _SortKey) -> int:
        return bisect.bisect_left(self._entries, key, key=lambda entry: entry[0])


def find_provisional_match(log_: MessageLog, confirmed: ChatMessage) -> Optional[ChatMessage]:
    """
    First unmatched provisional message that a confirmed row stands for.

    Match key is (sender, content, room); the oldest candidate wins. Two
    identical messages sent in quick succession may pair with each other's
    server rows, which swaps nothing visible since their content is equal.
    """
    for candidate in log_.provisional():
        if (
            candidate.sender_id == confirmed.sender_id
            and candidate.project_id == confirmed.project_id
            and (candidate.content or None) == (confirmed.content or None)
        ):
            return candidate
    return None


def reconcile_confirmed(
        log_: MessageLog,
        confirmed: ChatMessage,
        provisional_id: Optional[str] = None,
) -> Tuple[bool, Optional[ChatMessage]]:
    """
    Put a confirmed row into the log, retiring one provisional copy.

    Args:
        log_: Room message log
        confirmed: Row as stored
        provisional_id: The exact placeholder when known (insert response);
            when absent or already retired, the oldest matching one is used

    Returns:
        (log changed, retired placeholder or None)

    Safe to call for the same row from both the feed and the insert
    response. Whatever the interleaving, each confirmed row retires at most
    one placeholder and is itself added once.
    """
    if confirmed.id in log_:
        if provisional_id is not None and log_.remove(provisional_id) is not None:
            return True, None
        return False, None

    placeholder = None
    if provisional_id is not None:
        placeholder = log_.get(provisional_id)
    if placeholder is None:
        placeholder = find_provisional_match(log_, confirmed)
    if placeholder is not None:
        log_.remove(placeholder.id)
        log.debug(f"Provisional {placeholder.id} confirmed as {confirmed.id}")
    log_.add(confirmed)
    return True, placeholder


def toggle_reaction_set(
        reactions: List[Reaction],
        user_id: str,
        emoji: str,
        full_name: Optional[str] = None,
) -> List[Reaction]:
    """Add the (user, emoji) reaction or remove it when already present."""
    remaining = [r for r in reactions if not (r.user_id == user_id and r.emoji == emoji)]
    if len(remaining) != len(reactions):
        return remaining
    return remaining + [Reaction(user_id=user_id, emoji=emoji, full_name=full_name)]


def summarize_reactions(reactions: List[Reaction], viewer_id: str) -> List[ReactionSummary]:
    """Per-emoji counts in first-seen order."""
    grouped: Dict[str, ReactionSummary] = {}
    for reaction in reactions:
        summary = grouped.get(reaction.emoji)
        if summary is None:
            summary = grouped[reaction.emoji] = ReactionSummary(emoji=reaction.emoji, count=0)
        summary.count += 1
        summary.reactor_names.append(reaction.full_name or "Unknown")
        if reaction.user_id == viewer_id:
            summary.viewer_reacted = True
    return list(grouped.values())


class SeenWindow:
    """
    Bounded memory of processed ids for at-least-once feeds.

    Keeps the most recent ``window_size`` ids; older ids fall out and would
    be treated as new again.
    """

    def __init__(self, window_size: int = 1000) -> None:
        self.window_size = window_size
        self._ids: Set[str] = set()
        self._order: Deque[str] = deque()
        self.duplicate_count = 0

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def check_and_add(self, item_id: str) -> bool:
        """Record the id. Returns True if it had already been seen."""
        if item_id in self._ids:
            self.duplicate_count += 1
            return True
        self._ids.add(item_id)
        self._order.append(item_id)
        if len(self._order) > self.window_size:
            self._ids.discard(self._order.popleft())
        return False
