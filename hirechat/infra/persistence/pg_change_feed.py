# =============================================================================
# File: hirechat/infra/persistence/pg_change_feed.py
# Description: ChangeFeedPort over PostgreSQL LISTEN/NOTIFY
# =============================================================================

"""
Row change events are produced by the ``hirechat_notify_change`` trigger in
schema.sql, which sends ``{"table", "op", "row", "old"}`` JSON on one notify
channel. A single dedicated connection LISTENs and fans events out to the
in-process subscribers whose table and row filter match.

NOTIFY payloads are limited to 8000 bytes; for larger rows the trigger sends
only the primary key, which column filters do not match. Unfiltered
subscribers still see the event and recompute.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import asyncpg
from asyncpg.exceptions import InterfaceError, PostgresError

from hirechat.chat.enums import ChangeOperation
from hirechat.chat.ports.realtime_ports import ChangeHandler
from hirechat.chat.value_objects import ChangeEvent, RowFilter
from hirechat.common.enums.enums import Table
from hirechat.common.exceptions.exceptions import ChangeFeedError
from hirechat.config.pg_config import PostgresConfig, get_pg_config

log = logging.getLogger("hirechat.infra.pg_change_feed")


def parse_notification(payload: str) -> ChangeEvent:
    """
    Decode a trigger payload.

    Raises:
        ValueError: payload is not a valid change document
    """
    data = json.loads(payload)
    try:
        table = Table(data["table"])
        operation = ChangeOperation(data["op"])
    except KeyError as error:
        raise ValueError(f"missing field {error}") from error
    return ChangeEvent(
        table=table,
        operation=operation,
        row=data.get("row") or {},
        old=data.get("old"),
    )


@dataclass
class _Registration:
    id: int
    table: Table
    handler: ChangeHandler
    row_filter: Optional[RowFilter]


class PgFeedSubscription:
    """Handle for one registration on PostgresChangeFeed"""

    def __init__(self, feed: 'PostgresChangeFeed', registration_id: int):
        self._feed = feed
        self._registration_id = registration_id

    async def unsubscribe(self) -> None:
        self._feed.remove(self._registration_id)


class PostgresChangeFeed:
    """
    Usage:
        feed = PostgresChangeFeed(get_pg_config())
        await feed.start()
        sub = await feed.subscribe(Table.MESSAGES, handler, RowFilter.eq("project_id", pid))
        await sub.unsubscribe()
        await feed.stop()
    """

    def __init__(self, config: Optional[PostgresConfig] = None):
        self._config = config or get_pg_config()
        self._channel = self._config.notify_channel
        self._conn: Optional[asyncpg.Connection] = None
        self._registrations: Dict[Table, List[_Registration]] = {}
        self._ids = itertools.count(1)
        self._start_lock = asyncio.Lock()

        self.events_received = 0
        self.events_dropped = 0

    @property
    def is_listening(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def start(self) -> None:
        async with self._start_lock:
            if self.is_listening:
                return
            try:
                self._conn = await asyncpg.connect(dsn=self._config.dsn.get_secret_value())
                await self._conn.add_listener(self._channel, self._on_notification)
            except (PostgresError, InterfaceError, OSError) as error:
                self._conn = None
                raise ChangeFeedError(f"LISTEN {self._channel} failed: {error}") from error
            log.info(f"Change feed listening on channel '{self._channel}'")

    async def stop(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.remove_listener(self._channel, self._on_notification)
        finally:
            await conn.close()
        log.info("Change feed stopped")

    async def subscribe(
        self,
        table: Table,
        handler: ChangeHandler,
        row_filter: Optional[RowFilter] = None,
    ) -> PgFeedSubscription:
        if not self.is_listening:
            await self.start()
        registration = _Registration(next(self._ids), Table(table), handler, row_filter)
        self._registrations.setdefault(registration.table, []).append(registration)
        log.debug(f"Subscribed #{registration.id} to {table} (filter={row_filter})")
        return PgFeedSubscription(self, registration.id)

    def remove(self, registration_id: int) -> None:
        for registrations in self._registrations.values():
            for registration in list(registrations):
                if registration.id == registration_id:
                    registrations.remove(registration)
                    return

    def subscriber_count(self, table: Table) -> int:
        return len(self._registrations.get(Table(table), []))

    def _on_notification(self, connection: Any, pid: int, channel: str, payload: str) -> None:
        try:
            event = parse_notification(payload)
        except ValueError as error:
            self.events_dropped += 1
            log.warning(f"Dropping malformed change notification on '{channel}': {error}")
            return
        self.events_received += 1
        self.dispatch(event)

    def dispatch(self, event: ChangeEvent) -> int:
        """Deliver an event to matching subscribers. Returns delivery count."""
        delivered = 0
        for registration in list(self._registrations.get(event.table, [])):
            if registration.row_filter is not None and not registration.row_filter.matches(event.record):
                continue
            try:
                registration.handler(event)
                delivered += 1
            except Exception as error:
                log.error(f"Change handler #{registration.id} on {event.table} failed: {error}", exc_info=True)
        return delivered
