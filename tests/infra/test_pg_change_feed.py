# =============================================================================
# File: tests/infra/test_pg_change_feed.py
# Description: LISTEN/NOTIFY change feed decoding and fan-out
# =============================================================================

import json

import pytest

from hirechat.chat.enums import ChangeOperation
from hirechat.chat.value_objects import RowFilter
from hirechat.common.enums.enums import Table
from hirechat.common.exceptions.exceptions import ChangeFeedError
from hirechat.config.pg_config import PostgresConfig
from hirechat.infra.persistence import pg_change_feed
from hirechat.infra.persistence.pg_change_feed import PostgresChangeFeed, parse_notification

pytestmark = pytest.mark.unit


class FakeConnection:
    def __init__(self):
        self.listeners = {}
        self.closed = False

    async def add_listener(self, channel, callback):
        self.listeners[channel] = callback

    async def remove_listener(self, channel, callback):
        self.listeners.pop(channel, None)

    def is_closed(self):
        return self.closed

    async def close(self):
        self.closed = True

    def notify(self, channel, payload):
        self.listeners[channel](self, 4242, channel, payload)


@pytest.fixture
def connection(monkeypatch):
    conn = FakeConnection()

    async def fake_connect(dsn):
        return conn

    monkeypatch.setattr(pg_change_feed.asyncpg, "connect", fake_connect)
    return conn


@pytest.fixture
def config():
    return PostgresConfig(notify_channel="hirechat_changes")


def payload(table="messages", op="INSERT", row=None, old=None):
    return json.dumps({"table": table, "op": op, "row": row, "old": old})


class TestParseNotification:

    def test_insert(self):
        event = parse_notification(payload(row={"id": "m1", "project_id": "p1"}))
        assert event.table == Table.MESSAGES
        assert event.operation == ChangeOperation.INSERT
        assert event.row["id"] == "m1"

    def test_delete_keeps_old_row(self):
        event = parse_notification(payload(op="DELETE", old={"id": "m1", "project_id": "p1"}))
        assert event.row == {}
        assert event.record["project_id"] == "p1"

    @pytest.mark.parametrize("raw", [
        "not json",
        json.dumps({"op": "INSERT"}),
        json.dumps({"table": "payments", "op": "INSERT"}),
        json.dumps({"table": "messages", "op": "TRUNCATE"}),
    ])
    def test_malformed(self, raw):
        with pytest.raises(ValueError):
            parse_notification(raw)


class TestFanOut:

    async def test_filtered_delivery(self, connection, config):
        feed = PostgresChangeFeed(config)
        received = []
        await feed.subscribe(Table.MESSAGES, received.append, RowFilter.eq("project_id", "p1"))
        await feed.subscribe(Table.INVITATIONS, lambda event: received.append("invitation"))

        connection.notify("hirechat_changes", payload(row={"id": "m1", "project_id": "p1"}))
        connection.notify("hirechat_changes", payload(row={"id": "m2", "project_id": "p2"}))
        connection.notify("hirechat_changes", payload(op="DELETE", old={"id": "m1", "project_id": "p1"}))

        assert [event.record["id"] for event in received] == ["m1", "m1"]
        assert feed.events_received == 3

    async def test_malformed_notification_is_dropped(self, connection, config):
        feed = PostgresChangeFeed(config)
        await feed.subscribe(Table.MESSAGES, lambda event: None)
        connection.notify("hirechat_changes", "{broken")
        assert feed.events_dropped == 1
        assert feed.events_received == 0

    async def test_failing_handler_does_not_stop_others(self, connection, config):
        feed = PostgresChangeFeed(config)
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        await feed.subscribe(Table.MESSAGES, broken)
        await feed.subscribe(Table.MESSAGES, received.append)
        connection.notify("hirechat_changes", payload(row={"id": "m1"}))

        assert len(received) == 1

    async def test_unsubscribe_and_stop(self, connection, config):
        feed = PostgresChangeFeed(config)
        subscription = await feed.subscribe(Table.MESSAGES, lambda event: None)
        assert feed.subscriber_count(Table.MESSAGES) == 1

        await subscription.unsubscribe()
        assert feed.subscriber_count(Table.MESSAGES) == 0

        await feed.stop()
        assert connection.closed
        assert not feed.is_listening

    async def test_connect_failure(self, monkeypatch, config):
        async def refuse(dsn):
            raise OSError("connection refused")

        monkeypatch.setattr(pg_change_feed.asyncpg, "connect", refuse)
        with pytest.raises(ChangeFeedError):
            await PostgresChangeFeed(config).subscribe(Table.MESSAGES, lambda event: None)
