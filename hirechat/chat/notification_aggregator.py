# =============================================================================
# File: hirechat/chat/notification_aggregator.py
# Description: Cross-room unread counters (messages, invitations, applications)
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from hirechat.chat.ports.realtime_ports import ChangeFeedPort, FeedSubscription, RowStorePort
from hirechat.chat.read_models import NotificationCounters
from hirechat.chat.scheduling import BackgroundTasks, CoalescingRunner
from hirechat.chat.session import ChatSession
from hirechat.chat.signals import ChangeSignal
from hirechat.chat.value_objects import ChangeEvent, RowFilter
from hirechat.common.enums.enums import Table

log = logging.getLogger("hirechat.chat.notification_aggregator")

WATCHED_TABLES = (Table.MESSAGES, Table.APPLICATIONS, Table.INVITATIONS)


class NotificationAggregator:
    """
    Badge counters for the current user.

    Recomputed from the source tables on demand, on any change event of the
    watched tables and whenever the shared change signal fires. Recomputes
    are coalesced; a counter whose query fails keeps its previous value.
    """

    def __init__(
            self,
            session: ChatSession,
            store: RowStorePort,
            feed: ChangeFeedPort,
            signal: Optional[ChangeSignal] = None,
    ):
        self._session = session
        self._policy = session.policy
        self._store = store
        self._feed = feed
        self._signal = signal

        self._counters = NotificationCounters()
        self.failures: Dict[str, str] = {}
        self.updated = ChangeSignal("notification-counters")

        self._tasks = BackgroundTasks("notifications")
        self._runner = CoalescingRunner(self.recompute_all, self._tasks, "notification-counts")
        self._subscriptions: List[FeedSubscription] = []

    @property
    def counters(self) -> NotificationCounters:
        return self._counters

    @property
    def total(self) -> int:
        return self._counters.total

    async def recompute_all(self) -> NotificationCounters:
        """Run the three counts concurrently and publish the new counters."""
        user_id = self._session.user_id
        results = await asyncio.gather(
            self._store.count(Table.INVITATIONS, self._policy.pending_invitation_filters(user_id)),
            self._policy.count_applications(self._store, user_id),
            self._store.count(Table.MESSAGES, self._policy.unread_message_filters(user_id)),
            return_exceptions=True,
        )

        values = {}
        for name, result in zip(("invitations", "applications", "messages"), results):
            if isinstance(result, BaseException):
                previous = getattr(self._counters, name)
                self.failures[name] = str(result)
                log.warning(f"Counter '{name}' refresh failed, keeping {previous}: {result}")
                values[name] = previous
            else:
                self.failures.pop(name, None)
                values[name] = int(result)

        self._counters = NotificationCounters(**values)
        self.updated.notify()
        return self._counters

    def refresh(self) -> asyncio.Task:
        """Coalesced background recompute."""
        return self._runner.request()

    async def wait_idle(self) -> None:
        await self._runner.wait()

    async def mark_messages_read(self) -> bool:
        """Zero the messages badge and mark every unread message as read."""
        self._counters = self._counters.model_copy(update={"messages": 0})
        self.updated.notify()
        try:
            await self._store.update(
                Table.MESSAGES,
                {"is_read": True},
                [
                    RowFilter.eq("receiver_id", self._session.user_id),
                    RowFilter.eq("is_read", False),
                ],
            )
            return True
        except Exception as error:
            log.warning(f"Marking messages read failed for user {self._session.user_id}: {error}")
            await self.recompute_all()
            return False

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def start(self) -> NotificationCounters:
        await self._subscribe()
        if self._signal is not None:
            self._signal.connect(self._on_signal)
        return await self.recompute_all()

    async def stop(self) -> None:
        if self._signal is not None:
            self._signal.disconnect(self._on_signal)
        await self._unsubscribe_all()
        await self._tasks.cancel_all()

    async def resubscribe(self) -> None:
        await self._unsubscribe_all()
        await self._subscribe()

    async def _subscribe(self) -> None:
        for table in WATCHED_TABLES:
            try:
                self._subscriptions.append(await self._feed.subscribe(table, self._on_change))
            except Exception as error:
                log.warning(f"Notification subscription on {table} failed, retry on next activation: {error}")

    async def _unsubscribe_all(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            try:
                await subscription.unsubscribe()
            except Exception as error:
                log.warning(f"Unsubscribe failed: {error}")

    def _on_change(self, event: ChangeEvent) -> None:
        self.refresh()

    def _on_signal(self) -> None:
        self.refresh()
