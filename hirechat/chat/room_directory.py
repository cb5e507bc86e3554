# =============================================================================
# File: hirechat/chat/room_directory.py
# Description: Room list of the current user with unread counts, read-state
#              tracking and handshake status changes
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from hirechat.chat.enums import ChangeOperation
from hirechat.chat.exceptions import InvalidStatusTransitionError, RoomNotFoundError
from hirechat.chat.notices import NoticeBoard
from hirechat.chat.ports.realtime_ports import ChangeFeedPort, FeedSubscription, RowStorePort
from hirechat.chat.read_models import ChatRoom
from hirechat.chat.reconciliation import SeenWindow
from hirechat.chat.scheduling import BackgroundTasks, CoalescingRunner
from hirechat.chat.session import ChatSession
from hirechat.chat.signals import ChangeSignal
from hirechat.chat.value_objects import ChangeEvent, RoomKey, RowFilter
from hirechat.common.enums.enums import HandshakeStatus, Table
from hirechat.config.messaging_config import MessagingConfig, get_messaging_config
from hirechat.utils.datetime_utils import parse_timestamp_robust, utc_now

log = logging.getLogger("hirechat.chat.room_directory")

INVITATION_COLUMNS = [
    "project_id", "seeker_id", "manager_id", "status", "manager_last_read_at", "seeker_last_read_at",
]


def _later(first: Optional[datetime], second: Optional[datetime]) -> Optional[datetime]:
    if first is None:
        return second
    if second is None:
        return first
    return max(first, second)


def select_initial_room(
        rooms: List[ChatRoom],
        hint_project_id: Optional[str] = None,
        hint_counterparty_id: Optional[str] = None,
) -> Optional[ChatRoom]:
    """
    Room to open first: the hinted one if present, else the first room.

    Args:
        rooms: Current room list
        hint_project_id: Project the user navigated from (deep link)
        hint_counterparty_id: Narrows the hint when a project has several rooms

    Returns:
        ChatRoom or None when the list is empty
    """
    if hint_project_id:
        for room in rooms:
            if room.project_id != str(hint_project_id):
                continue
            if hint_counterparty_id and room.counterparty_id != str(hint_counterparty_id):
                continue
            return room
    return rooms[0] if rooms else None


class RoomDirectory:
    """
    Rooms visible to the current user.

    One room per invitation row the user is party to (pending or accepted).
    The directory owns the cached unread counts: room sessions report reads
    through ``mark_read`` and live inserts are counted here for rooms that
    are not open.
    """

    def __init__(
            self,
            session: ChatSession,
            store: RowStorePort,
            feed: ChangeFeedPort,
            notices: Optional[NoticeBoard] = None,
            signal: Optional[ChangeSignal] = None,
            config: Optional[MessagingConfig] = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self._policy = session.policy
        self._store = store
        self._feed = feed
        self._notices = notices if notices is not None else NoticeBoard()
        self._config = config or get_messaging_config()
        self._clock = clock

        # Fired after every mutation (read state, status) for the aggregator
        self.signal = signal or ChangeSignal("messaging")
        # Fired whenever the cached room list changes (UI)
        self.updated = ChangeSignal("room-list")

        self._rooms: Dict[RoomKey, ChatRoom] = {}
        self._tasks = BackgroundTasks("room-directory")
        self._pending_reads: Set[asyncio.Task] = set()
        self._seen = SeenWindow(self._config.seen_event_window)
        self._subscriptions: List[FeedSubscription] = []
        self._refresher = CoalescingRunner(self.list_rooms, self._tasks, "room-list")

        self.active_room_key: Optional[RoomKey] = None
        self.last_error: Optional[Exception] = None

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def rooms(self) -> List[ChatRoom]:
        return list(self._rooms.values())

    def get_room(self, key: RoomKey) -> Optional[ChatRoom]:
        return self._rooms.get(key)

    async def list_rooms(self) -> List[ChatRoom]:
        """
        Reload the room list from the store.

        Pending read writes are awaited first so the unread counts reflect
        them. On any store failure the previous list is returned unchanged.
        """
        await self._drain_pending_reads()
        try:
            rooms = await self._load_rooms()
        except Exception as error:
            self.last_error = error
            log.warning(f"Room list refresh failed for user {self._session.user_id}, keeping previous list: {error}")
            return self.rooms

        self.last_error = None
        # Last write wins for duplicated invitation rows
        self._rooms = {room.key: room for room in rooms}
        self.updated.notify()
        return self.rooms

    def refresh(self) -> asyncio.Task:
        """Coalesced background reload (used by change feed handlers)."""
        return self._refresher.request()

    async def _load_rooms(self) -> List[ChatRoom]:
        user_id = self._session.user_id
        invitations = await self._store.select(
            Table.INVITATIONS,
            self._policy.room_filters(user_id),
            columns=INVITATION_COLUMNS,
        )
        if not invitations:
            return []

        project_ids = sorted({str(row["project_id"]) for row in invitations})
        partner_ids = sorted({self._policy.counterparty_id(row) for row in invitations})
        projects, profiles = await asyncio.gather(
            self._store.select(Table.PROJECTS, [RowFilter.in_("id", project_ids)], columns=["id", "title"]),
            self._store.select(Table.PROFILES, [RowFilter.in_("id", partner_ids)],
                               columns=["id", "full_name", "avatar_url"]),
        )
        titles = {str(row["id"]): row.get("title") or "" for row in projects}
        people = {str(row["id"]): row for row in profiles}

        rooms = [self._build_room(row, titles, people) for row in invitations]
        counts = await asyncio.gather(*(self._count_unread(room) for room in rooms))
        return [room.model_copy(update={"unread_count": count}) for room, count in zip(rooms, counts)]

    def _build_room(
            self,
            row: Mapping[str, Any],
            titles: Dict[str, str],
            people: Dict[str, Mapping[str, Any]],
    ) -> ChatRoom:
        project_id = str(row["project_id"])
        counterparty_id = self._policy.counterparty_id(row)
        key = RoomKey(project_id, counterparty_id)
        partner = people.get(counterparty_id, {})

        # A locally advanced read marker survives a reload that raced its write
        cached = self._rooms.get(key)
        last_read_at = _later(
            parse_timestamp_robust(row.get(self._policy.read_marker_column)),
            cached.last_read_at if cached else None,
        )

        return ChatRoom(
            project_id=project_id,
            seeker_id=row["seeker_id"],
            manager_id=row["manager_id"],
            counterparty_id=counterparty_id,
            status=row.get("status") or HandshakeStatus.PENDING,
            last_read_at=last_read_at,
            project_title=titles.get(project_id, ""),
            partner_name=partner.get("full_name") or self._policy.partner_fallback_name,
            partner_avatar_url=partner.get("avatar_url"),
        )

    async def _count_unread(self, room: ChatRoom) -> int:
        filters = [
            RowFilter.eq("project_id", room.project_id),
            RowFilter.eq("sender_id", room.counterparty_id),
            RowFilter.eq("receiver_id", self._session.user_id),
        ]
        if room.last_read_at is not None:
            filters.append(RowFilter.gt("created_at", room.last_read_at))
        return await self._store.count(Table.MESSAGES, filters)

    # =========================================================================
    # Read State
    # =========================================================================

    def mark_read(self, key: RoomKey) -> Optional[asyncio.Task]:
        """
        Advance the room's read marker to now and clear its unread count.

        The cache is updated immediately; persistence runs in the background
        and the returned task can be awaited by callers that care. The marker
        never moves backwards.
        """
        room = self._rooms.get(key)
        if room is None:
            log.debug(f"mark_read ignored for unknown room {key}")
            return None

        read_at = _later(room.last_read_at, self._clock())
        self._rooms[key] = room.model_copy(update={"last_read_at": read_at, "unread_count": 0})
        self.updated.notify()

        task = self._tasks.spawn(self._persist_read(room, read_at), name=f"mark-read-{key}")
        self._pending_reads.add(task)
        task.add_done_callback(self._pending_reads.discard)
        return task

    async def _persist_read(self, room: ChatRoom, read_at: datetime) -> None:
        user_id = self._session.user_id
        try:
            await self._store.update(
                Table.INVITATIONS,
                {self._policy.read_marker_column: read_at},
                [
                    RowFilter.eq("project_id", room.project_id),
                    RowFilter.eq(self._policy.party_column, user_id),
                    RowFilter.eq(self._policy.counterparty_column, room.counterparty_id),
                ],
            )
            await self._store.update(
                Table.MESSAGES,
                {"is_read": True},
                [
                    RowFilter.eq("project_id", room.project_id),
                    RowFilter.eq("sender_id", room.counterparty_id),
                    RowFilter.eq("receiver_id", user_id),
                    RowFilter.eq("is_read", False),
                    # messages that arrived after the marker stay unread
                    RowFilter.lte("created_at", read_at),
                ],
            )
        except Exception as error:
            log.warning(f"Persisting read state for room {room.key} failed: {error}")
        finally:
            self.signal.notify()

    async def mark_all_read(self) -> bool:
        """Advance every visible room's read marker in one write."""
        read_at = self._clock()
        self._rooms = {
            key: room.model_copy(update={"last_read_at": _later(room.last_read_at, read_at), "unread_count": 0})
            for key, room in self._rooms.items()
        }
        self.updated.notify()
        try:
            await self._store.update(
                Table.INVITATIONS,
                {self._policy.read_marker_column: read_at},
                self._policy.room_filters(self._session.user_id),
            )
            return True
        except Exception as error:
            log.warning(f"mark_all_read failed for user {self._session.user_id}: {error}")
            self._notices.push("Failed to clear notifications", str(error))
            return False
        finally:
            self.signal.notify()

    async def _drain_pending_reads(self) -> None:
        if self._pending_reads:
            await asyncio.gather(*list(self._pending_reads), return_exceptions=True)

    # =========================================================================
    # Handshake Status
    # =========================================================================

    async def update_status(self, key: RoomKey, status: HandshakeStatus) -> bool:
        """
        Accept or decline a pending handshake.

        Raises:
            RoomNotFoundError: room is not in the directory
            InvalidStatusTransitionError: not a pending -> accepted/declined move
        """
        status = HandshakeStatus(status)
        room = self._rooms.get(key)
        if room is None:
            raise RoomNotFoundError(key.project_id, key.counterparty_id)
        if room.status != HandshakeStatus.PENDING or status == HandshakeStatus.PENDING:
            raise InvalidStatusTransitionError(room.status.value, status.value)

        try:
            await self._store.update(
                Table.INVITATIONS,
                {"status": status.value},
                [
                    RowFilter.eq("project_id", room.project_id),
                    RowFilter.eq(self._policy.party_column, self._session.user_id),
                    RowFilter.eq(self._policy.counterparty_column, room.counterparty_id),
                ],
            )
        except Exception as error:
            log.warning(f"Status update {room.status.value} -> {status.value} failed for room {key}: {error}")
            self._notices.push("Failed to update status", str(error))
            return False

        self._rooms[key] = room.model_copy(update={"status": status})
        log.info(f"Room {key} moved to {status.value}")
        self.signal.notify()
        await self.list_rooms()
        return True

    # =========================================================================
    # Live Sync
    # =========================================================================

    async def start(self) -> None:
        """Subscribe to incoming messages and invitation changes."""
        user_id = self._session.user_id
        try:
            self._subscriptions.append(await self._feed.subscribe(
                Table.MESSAGES, self._on_message_event, RowFilter.eq("receiver_id", user_id)
            ))
            self._subscriptions.append(await self._feed.subscribe(
                Table.INVITATIONS, self._on_invitation_event, RowFilter.eq(self._policy.party_column, user_id)
            ))
        except Exception as error:
            log.warning(f"Room directory subscription failed, will retry on next activation: {error}")

    async def stop(self) -> None:
        await self._unsubscribe_all()
        await self._drain_pending_reads()
        await self._tasks.cancel_all()

    async def resubscribe(self) -> None:
        await self._unsubscribe_all()
        await self.start()

    async def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception as error:
                log.warning(f"Unsubscribe failed: {error}")

    def _on_message_event(self, event: ChangeEvent) -> None:
        if event.operation == ChangeOperation.INSERT:
            self.apply_remote_message(event.row)

    def _on_invitation_event(self, event: ChangeEvent) -> None:
        self.refresh()

    def apply_remote_message(self, row: Mapping[str, Any]) -> bool:
        """
        Count a newly inserted message against its room.

        Messages from the viewer, for the open room, already read, or already
        counted (at-least-once redelivery) are ignored. Returns True when an
        unread count changed.
        """
        sender_id = str(row.get("sender_id"))
        if sender_id == self._session.user_id:
            return False

        message_id = str(row.get("id"))
        if self._seen.check_and_add(message_id):
            log.debug(f"Duplicate delivery of message {message_id} ignored")
            return False

        key = RoomKey(str(row.get("project_id")), sender_id)
        if key == self.active_room_key:
            return False

        room = self._rooms.get(key)
        if room is None:
            # First message of a room we have not loaded yet
            self.refresh()
            return False

        created_at = parse_timestamp_robust(row.get("created_at"))
        if room.last_read_at and created_at and created_at <= room.last_read_at:
            return False

        self._rooms[key] = room.model_copy(update={"unread_count": room.unread_count + 1})
        self.updated.notify()
        return True
