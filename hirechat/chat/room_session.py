# =============================================================================
# File: hirechat/chat/room_session.py
# Description: Active room session: history load, live sync, optimistic send
#              with reconciliation, reactions, typing and read state
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from hirechat.chat.enums import ChangeOperation, RoomSessionState
from hirechat.chat.exceptions import SessionClosedError
from hirechat.chat.notices import NoticeBoard
from hirechat.chat.ports.realtime_ports import (
    BroadcastPort,
    ChangeFeedPort,
    FeedSubscription,
    ObjectStoragePort,
    RowStorePort,
)
from hirechat.chat.presentation import group_messages_by_day
from hirechat.chat.read_models import ChatMessage, ChatRoom, ReactionSummary
from hirechat.chat.reconciliation import (
    MessageLog,
    reconcile_confirmed,
    summarize_reactions,
    toggle_reaction_set,
)
from hirechat.chat.room_directory import RoomDirectory
from hirechat.chat.scheduling import BackgroundTasks, LoopScheduler, Scheduler
from hirechat.chat.session import ChatSession
from hirechat.chat.signals import ChangeSignal
from hirechat.chat.typing_signal import PartnerTypingIndicator, TypingBroadcaster
from hirechat.chat.value_objects import ChangeEvent, OutgoingAttachment, RoomKey, RowFilter
from hirechat.common.enums.enums import Table
from hirechat.config.messaging_config import MessagingConfig, get_messaging_config
from hirechat.utils.datetime_utils import utc_now

log = logging.getLogger("hirechat.chat.room_session")

TYPING_EVENT = "typing"


class RoomSession:
    """
    Owner of the message log of one open room.

    Lifecycle: CLOSED -> LOADING -> LIVE -> CLOSED. Every open bumps an
    activation epoch; feed and broadcast callbacks carry the epoch they were
    registered under and are dropped once it is stale.
    """

    def __init__(
            self,
            session: ChatSession,
            room: ChatRoom,
            store: RowStorePort,
            feed: ChangeFeedPort,
            broadcast: BroadcastPort,
            storage: ObjectStoragePort,
            notices: Optional[NoticeBoard] = None,
            directory: Optional[RoomDirectory] = None,
            config: Optional[MessagingConfig] = None,
            scheduler: Optional[Scheduler] = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self._room = room
        self._store = store
        self._feed = feed
        self._broadcast = broadcast
        self._storage = storage
        self._notices = notices if notices is not None else NoticeBoard()
        self._directory = directory
        self._config = config or get_messaging_config()
        self._scheduler = scheduler or LoopScheduler()
        self._clock = clock

        self.state = RoomSessionState.CLOSED
        self.load_failed = False
        self.draft = ""
        self.changed = ChangeSignal(f"room:{room.key}")

        self._epoch = 0
        self._log = MessageLog()
        self._tasks = BackgroundTasks(f"room-{room.key}")
        self._subscriptions: List[FeedSubscription] = []
        self._typing: Optional[TypingBroadcaster] = None
        self._partner: Optional[PartnerTypingIndicator] = None

        # provisional id -> server id, for placeholders retired by the feed
        self._feed_confirmed: Dict[str, str] = {}
        # Reaction writes: per-message lock, toggle version, last confirmed set
        self._reaction_locks: Dict[str, asyncio.Lock] = {}
        self._reaction_versions: Dict[str, int] = {}
        self._reaction_baseline: Dict[str, list] = {}

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def room(self) -> ChatRoom:
        return self._room

    @property
    def key(self) -> RoomKey:
        return self._room.key

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_live(self) -> bool:
        return self.state == RoomSessionState.LIVE

    @property
    def messages(self) -> List[ChatMessage]:
        return self._log.messages

    @property
    def partner_typing(self) -> bool:
        return self._partner is not None and self._partner.is_typing

    @property
    def reaction_summaries(self) -> Dict[str, List[ReactionSummary]]:
        return {
            message.id: summarize_reactions(message.reactions, self._session.user_id)
            for message in self._log
            if message.reactions
        }

    def grouped_messages(self, now: Optional[datetime] = None) -> List[Tuple[str, List[ChatMessage]]]:
        return group_messages_by_day(self._log.messages, now=now or self._clock())

    @property
    def channel_name(self) -> str:
        return self._room.channel_name(self._config.typing_channel_prefix)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self) -> bool:
        """
        Subscribe, then load the most recent history.

        Subscribing first means rows inserted while the history query runs
        are not lost; the log dedupes the overlap by id. Returns False when
        the history fetch failed (the session is left CLOSED with
        ``load_failed`` set so the UI can offer a retry).
        """
        if self.state != RoomSessionState.CLOSED:
            await self.close()

        self._epoch += 1
        epoch = self._epoch
        self.state = RoomSessionState.LOADING
        self.load_failed = False
        self._log.clear()
        self._feed_confirmed.clear()
        self._reaction_locks.clear()
        self._reaction_versions.clear()
        self._reaction_baseline.clear()
        self._typing = TypingBroadcaster(
            self._publish_typing, self._scheduler, self._tasks, self._config.typing_idle_seconds
        )
        self._partner = PartnerTypingIndicator(
            self._session.user_id,
            self._scheduler,
            self._config.partner_typing_timeout_seconds,
            on_change=lambda _: self.changed.notify(),
        )
        if self._directory is not None:
            self._directory.active_room_key = self.key

        await self._subscribe(epoch)

        try:
            rows = await self._fetch_history()
        except Exception as error:
            if epoch != self._epoch:
                return False
            log.warning(f"History load failed for room {self.key}: {error}")
            self._notices.push("Failed to load messages", str(error))
            await self.close()
            self.load_failed = True
            return False

        if epoch != self._epoch:
            log.debug(f"Room {self.key} closed while loading, discarding history")
            return False

        self._merge_history(rows)
        self.state = RoomSessionState.LIVE
        log.info(f"Room {self.key} live with {len(self._log)} messages")
        self._mark_read()
        self.changed.notify()
        return True

    async def close(self) -> None:
        """Tear down subscriptions and timers; later callbacks become no-ops."""
        self._epoch += 1
        self.state = RoomSessionState.CLOSED

        if self._typing is not None:
            self._typing.dispose()
        if self._partner is not None:
            self._partner.dispose()

        await self._unsubscribe_all()

        if self._directory is not None and self._directory.active_room_key == self.key:
            self._directory.active_room_key = None
        self.changed.notify()

    async def resync(self) -> bool:
        """
        Re-establish subscriptions and merge fresh history (e.g. after the
        page regained visibility). Opens the room when it is not live.
        """
        if self.state != RoomSessionState.LIVE:
            return await self.open()

        epoch = self._epoch
        await self._unsubscribe_all()
        await self._subscribe(epoch)
        try:
            rows = await self._fetch_history()
        except Exception as error:
            log.warning(f"History resync failed for room {self.key}: {error}")
            return False
        if epoch != self._epoch:
            return False
        self._merge_history(rows)
        self.changed.notify()
        return True

    async def _subscribe(self, epoch: int) -> None:
        try:
            self._subscriptions.append(await self._feed.subscribe(
                Table.MESSAGES,
                partial(self._on_feed_event, epoch),
                RowFilter.eq("project_id", self._room.project_id),
            ))
        except Exception as error:
            log.warning(f"Message feed subscription failed for room {self.key}, retry on next activation: {error}")
        try:
            self._subscriptions.append(await self._broadcast.join(
                self.channel_name, partial(self._on_broadcast, epoch)
            ))
        except Exception as error:
            log.warning(f"Typing channel join failed for room {self.key}: {error}")

    async def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception as error:
                log.warning(f"Unsubscribe failed for room {self.key}: {error}")

    async def _fetch_history(self) -> List[Dict[str, Any]]:
        parties = [self._session.user_id, self._room.counterparty_id]
        rows = await self._store.select(
            Table.MESSAGES,
            [
                RowFilter.eq("project_id", self._room.project_id),
                RowFilter.in_("sender_id", parties),
                RowFilter.in_("receiver_id", parties),
            ],
            order_by="created_at",
            descending=True,
            limit=self._config.history_limit,
        )
        rows.reverse()
        return rows

    def _merge_history(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            message = ChatMessage.from_row(row)
            if not self._log.add(message):
                self._log.replace(message)

    def _is_current(self, epoch: int) -> bool:
        if epoch != self._epoch or self.state == RoomSessionState.CLOSED:
            log.debug(f"Dropping stale callback for room {self.key} (epoch {epoch}, current {self._epoch})")
            return False
        return True

    # =========================================================================
    # Remote Events
    # =========================================================================

    def _on_feed_event(self, epoch: int, event: ChangeEvent) -> None:
        if not self._is_current(epoch):
            return
        try:
            if event.operation == ChangeOperation.INSERT:
                self.on_remote_insert(ChatMessage.from_row(event.row))
            elif event.operation == ChangeOperation.UPDATE:
                self.on_remote_update(ChatMessage.from_row(event.row))
            elif event.operation == ChangeOperation.DELETE:
                self.on_remote_delete(str(event.record.get("id")))
        except PydanticValidationError as error:
            log.warning(f"Malformed message row on room {self.key} feed: {error}")

    def _on_broadcast(self, epoch: int, payload: Dict[str, Any]) -> None:
        if not self._is_current(epoch):
            return
        if payload.get("event") != TYPING_EVENT:
            return
        self.on_remote_typing(payload.get("user_id"), bool(payload.get("typing")))

    def on_remote_insert(self, message: ChatMessage) -> bool:
        """Append a confirmed row unless already present. Returns True if added."""
        if not message.is_between(self._session.user_id, self._room.counterparty_id):
            return False
        changed, placeholder = reconcile_confirmed(self._log, message)
        if not changed:
            log.debug(f"Message {message.id} already in room {self.key}")
            return False
        if placeholder is not None:
            self._feed_confirmed[placeholder.id] = message.id

        if message.sender_id == self._room.counterparty_id:
            if self._partner is not None:
                self._partner.clear()
            if self.is_live:
                self._mark_read()
        self.changed.notify()
        return True

    def on_remote_update(self, message: ChatMessage) -> bool:
        """Replace the message with the same id in place; no-op if unknown."""
        if not self._log.replace(message):
            log.debug(f"Update for unknown message {message.id} in room {self.key} ignored")
            return False
        self.changed.notify()
        return True

    def on_remote_delete(self, message_id: str) -> bool:
        if self._log.remove(message_id) is None:
            log.debug(f"Delete for unknown message {message_id} in room {self.key} ignored")
            return False
        self.changed.notify()
        return True

    def on_remote_typing(self, user_id: Optional[str], is_typing: bool) -> None:
        if self._partner is not None:
            self._partner.update(user_id, is_typing)

    # =========================================================================
    # Send
    # =========================================================================

    async def send(self, text: Optional[str], attachment: Optional[OutgoingAttachment] = None) -> bool:
        """
        Optimistically append a message, upload its attachment, persist it.

        The provisional copy is shown immediately and replaced by the stored
        row (from the feed or from the insert response, whichever comes
        first). On failure or cancellation it is removed, the draft is
        restored and a notice is posted.

        Returns:
            True when the message was stored

        Raises:
            SessionClosedError: the room is not open
        """
        if self.state == RoomSessionState.CLOSED:
            raise SessionClosedError("send")

        content = text if text and text.strip() else None
        if content is None and attachment is None:
            return False

        if attachment is not None and attachment.size > self._config.max_attachment_bytes:
            limit_mb = self._config.max_attachment_bytes // (1024 * 1024)
            log.info(f"Attachment {attachment.filename} rejected: {attachment.size} bytes")
            self._notices.push("File too large", f"{attachment.filename} exceeds the {limit_mb}MB limit")
            return False

        if self._typing is not None:
            self._typing.flush()

        epoch = self._epoch
        provisional = ChatMessage.provisional(
            project_id=self._room.project_id,
            sender_id=self._session.user_id,
            receiver_id=self._room.counterparty_id,
            content=content,
            file_type=attachment.content_type if attachment else None,
            created_at=self._clock(),
        )
        self._log.add(provisional)
        self.draft = ""
        self.changed.notify()

        try:
            file_url = None
            if attachment is not None:
                try:
                    file_url = await self._storage.upload(
                        self._attachment_path(provisional.id, attachment.filename),
                        attachment.content,
                        attachment.content_type,
                    )
                except Exception as error:
                    self._rollback_send(provisional, text, "Upload failed", error)
                    return False

            try:
                row = await self._store.insert(Table.MESSAGES, provisional.to_insert_row(file_url))
            except Exception as error:
                # Feed matches are by (sender, content, room) only, so an identical
                # message from this user's other tab can stand in here. Without a
                # stored client id the two are indistinguishable; see DESIGN.md.
                if provisional.id in self._feed_confirmed:
                    log.info(f"Insert reported {error} but feed already confirmed {provisional.id}")
                    return True
                self._rollback_send(provisional, text, "Failed to send", error)
                return False
        except asyncio.CancelledError:
            self._rollback_send(provisional, text, "Sending cancelled", None)
            raise

        if epoch == self._epoch:
            reconcile_confirmed(self._log, ChatMessage.from_row(row), provisional_id=provisional.id)
            self._mark_read()
            self.changed.notify()
        return True

    def _attachment_path(self, provisional_id: str, filename: str) -> str:
        return f"{self._config.attachment_bucket}/{self._room.project_id}/{provisional_id}-{filename}"

    def _rollback_send(
            self,
            provisional: ChatMessage,
            text: Optional[str],
            title: str,
            error: Optional[BaseException],
    ) -> None:
        self._log.remove(provisional.id)
        if text:
            self.draft = f"{text}\n{self.draft}" if self.draft else text
        detail = str(error) if error is not None else "The message was not sent"
        log.warning(f"{title} in room {self.key}, provisional {provisional.id} rolled back: {detail}")
        self._notices.push(title, detail)
        self.changed.notify()

    # =========================================================================
    # Reactions
    # =========================================================================

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        """
        Toggle the viewer's ``emoji`` reaction on a message.

        The local copy flips immediately; writes for one message are
        serialized and always carry the latest local set, so rapid toggles
        converge on the last one. A failed latest write restores the last
        confirmed set.
        """
        message = self._log.get(message_id)
        if message is None or message.is_provisional:
            log.debug(f"Reaction on unknown or unconfirmed message {message_id} ignored")
            return False

        self._reaction_baseline.setdefault(message_id, list(message.reactions))
        updated = toggle_reaction_set(message.reactions, self._session.user_id, emoji, self._session.full_name)
        self._log.replace(message.with_reactions(updated))
        self.changed.notify()

        version = self._reaction_versions.get(message_id, 0) + 1
        self._reaction_versions[message_id] = version
        lock = self._reaction_locks.setdefault(message_id, asyncio.Lock())

        async with lock:
            if version != self._reaction_versions.get(message_id):
                # A later toggle will write the newer set
                return True
            current = self._log.get(message_id)
            if current is None:
                return False
            try:
                await self._store.update(
                    Table.MESSAGES,
                    {"reactions": current.reactions_payload()},
                    [RowFilter.eq("id", message_id)],
                )
            except Exception as error:
                log.warning(f"Reaction write for message {message_id} failed: {error}")
                if version == self._reaction_versions.get(message_id):
                    self._revert_reactions(message_id)
                    self._notices.push("Failed to react", str(error))
                    self._settle_reactions(message_id)
                return False

            latest = self._reaction_versions.get(message_id)
            if version == latest:
                self._settle_reactions(message_id)
            elif latest is not None:
                self._reaction_baseline[message_id] = list(current.reactions)
            return True

    def _settle_reactions(self, message_id: str) -> None:
        # Latest write done; earlier waiters already went through the lock
        self._reaction_baseline.pop(message_id, None)
        self._reaction_versions.pop(message_id, None)
        self._reaction_locks.pop(message_id, None)

    def _revert_reactions(self, message_id: str) -> None:
        baseline = self._reaction_baseline.pop(message_id, None)
        current = self._log.get(message_id)
        if baseline is None or current is None:
            return
        self._log.replace(current.with_reactions(baseline))
        self.changed.notify()

    # =========================================================================
    # Typing
    # =========================================================================

    def on_input(self, text: str) -> None:
        """Draft changed in the composer."""
        self.draft = text
        self.send_typing(bool(text))

    def send_typing(self, is_typing: bool) -> None:
        if self._typing is None or self.state == RoomSessionState.CLOSED:
            return
        if is_typing:
            self._typing.keystroke()
        else:
            self._typing.flush()

    async def _publish_typing(self, is_typing: bool) -> None:
        await self._broadcast.publish(
            self.channel_name,
            {"event": TYPING_EVENT, "user_id": self._session.user_id, "typing": is_typing},
        )

    # =========================================================================
    # Read State
    # =========================================================================

    def _mark_read(self) -> Optional[asyncio.Task]:
        if self._directory is None:
            return None
        return self._directory.mark_read(self.key)

    async def drain(self) -> None:
        """Wait for background work (typing frames) spawned by this session."""
        await self._tasks.drain()
