# =============================================================================
# File: hirechat/chat/messaging_service.py
# Description: Facade wiring room directory, notification aggregator and the
#              active room session for one signed-in user
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from hirechat.chat.exceptions import RoomNotFoundError
from hirechat.chat.notices import NoticeBoard
from hirechat.chat.notification_aggregator import NotificationAggregator
from hirechat.chat.ports.realtime_ports import (
    BroadcastPort,
    ChangeFeedPort,
    ObjectStoragePort,
    RowStorePort,
)
from hirechat.chat.room_directory import RoomDirectory, select_initial_room
from hirechat.chat.room_session import RoomSession
from hirechat.chat.scheduling import Scheduler
from hirechat.chat.session import ChatSession
from hirechat.chat.signals import ChangeSignal
from hirechat.chat.value_objects import RoomKey
from hirechat.config.messaging_config import MessagingConfig, get_messaging_config
from hirechat.utils.datetime_utils import utc_now

log = logging.getLogger("hirechat.chat.messaging_service")


class MessagingService:
    """
    Entry point for the host application.

    Usage:
        service = MessagingService(session, store, feed, broadcast, storage)
        room_session = await service.start(hint_project_id=project_id)
        await room_session.send("Hello")
        badge = service.notifications.total
    """

    def __init__(
            self,
            session: ChatSession,
            store: RowStorePort,
            feed: ChangeFeedPort,
            broadcast: BroadcastPort,
            storage: ObjectStoragePort,
            config: Optional[MessagingConfig] = None,
            scheduler: Optional[Scheduler] = None,
            notices: Optional[NoticeBoard] = None,
            clock: Callable[[], datetime] = utc_now,
    ):
        self.session = session
        self._store = store
        self._feed = feed
        self._broadcast = broadcast
        self._storage = storage
        self._config = config or get_messaging_config()
        self._scheduler = scheduler
        self._clock = clock

        self.notices = notices if notices is not None else NoticeBoard()
        self.signal = ChangeSignal("messaging")
        self.directory = RoomDirectory(
            session, store, feed, self.notices, self.signal, self._config, clock=clock
        )
        self.notifications = NotificationAggregator(session, store, feed, self.signal)
        self.active_session: Optional[RoomSession] = None
        self._switch_lock = asyncio.Lock()

    async def start(
            self,
            hint_project_id: Optional[str] = None,
            hint_counterparty_id: Optional[str] = None,
    ) -> Optional[RoomSession]:
        """Start live sync, load rooms and open the initial room (if any)."""
        await self.notifications.start()
        await self.directory.start()
        rooms = await self.directory.list_rooms()
        log.info(f"Messaging started for user {self.session.user_id} with {len(rooms)} rooms")

        initial = select_initial_room(rooms, hint_project_id, hint_counterparty_id)
        if initial is None:
            return None
        return await self.select_room(initial.key)

    async def select_room(self, key: RoomKey) -> RoomSession:
        """
        Make ``key`` the active room. The previous session is fully closed
        before the next one subscribes.

        Raises:
            RoomNotFoundError: room is not in the directory
        """
        async with self._switch_lock:
            room = self.directory.get_room(key)
            if room is None:
                raise RoomNotFoundError(key.project_id, key.counterparty_id)

            current = self.active_session
            if current is not None:
                if current.key == key and current.is_live:
                    return current
                await current.close()

            self.active_session = RoomSession(
                self.session,
                room,
                self._store,
                self._feed,
                self._broadcast,
                self._storage,
                notices=self.notices,
                directory=self.directory,
                config=self._config,
                scheduler=self._scheduler,
                clock=self._clock,
            )
            await self.active_session.open()
            return self.active_session

    async def on_visibility_regained(self) -> None:
        """Resubscribe everything and recompute after the page was hidden."""
        await self.notifications.resubscribe()
        await self.directory.resubscribe()
        await self.directory.list_rooms()
        if self.active_session is not None:
            await self.active_session.resync()
        await self.notifications.recompute_all()

    async def stop(self) -> None:
        async with self._switch_lock:
            if self.active_session is not None:
                await self.active_session.close()
                await self.active_session.drain()
                self.active_session = None
        await self.directory.stop()
        await self.notifications.stop()
        log.info(f"Messaging stopped for user {self.session.user_id}")
