# =============================================================================
# File: tests/conftest.py
# Description: Shared fixtures for messaging core tests
# =============================================================================

from __future__ import annotations

import pytest

from hirechat.chat.notices import NoticeBoard
from hirechat.chat.room_directory import RoomDirectory
from hirechat.chat.room_session import RoomSession
from hirechat.chat.session import ChatSession
from hirechat.common.enums.enums import Table, UserRole
from hirechat.config.messaging_config import MessagingConfig

from tests.fakes.fake_broadcast import FakeBroadcast
from tests.fakes.fake_change_feed import FakeChangeFeed
from tests.fakes.fake_object_storage import FakeObjectStorage
from tests.fakes.fake_row_store import FakeRowStore
from tests.fakes.manual_scheduler import ManualScheduler

MANAGER_ID = "u-mgr"
SEEKER_ID = "u-seek"
SECOND_SEEKER_ID = "u-seek2"
PROJECT_ID = "p-backend"


def seed_marketplace(store: FakeRowStore) -> None:
    """
    One manager, two seekers, one project.

    The first seeker's handshake is accepted, the second one is pending.
    """
    store.seed(Table.PROFILES, [
        {"id": MANAGER_ID, "full_name": "Maria Manager", "avatar_url": None, "role": "manager"},
        {"id": SEEKER_ID, "full_name": "Sam Seeker", "avatar_url": "https://img.test/sam.png", "role": "seeker"},
        {"id": SECOND_SEEKER_ID, "full_name": None, "avatar_url": None, "role": "seeker"},
    ])
    store.seed(Table.PROJECTS, [
        {"id": PROJECT_ID, "title": "Backend Engineer", "manager_id": MANAGER_ID},
    ])
    store.seed(Table.INVITATIONS, [
        {"project_id": PROJECT_ID, "seeker_id": SEEKER_ID, "manager_id": MANAGER_ID, "status": "accepted"},
        {"project_id": PROJECT_ID, "seeker_id": SECOND_SEEKER_ID, "manager_id": MANAGER_ID, "status": "pending"},
    ])


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def store(feed) -> FakeRowStore:
    store = FakeRowStore(feed=feed)
    seed_marketplace(store)
    return store


@pytest.fixture
def broadcast() -> FakeBroadcast:
    return FakeBroadcast()


@pytest.fixture
def storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def notices() -> NoticeBoard:
    return NoticeBoard()


@pytest.fixture
def config() -> MessagingConfig:
    return MessagingConfig(history_limit=50, typing_idle_seconds=2.0, partner_typing_timeout_seconds=5.0)


@pytest.fixture
def manager() -> ChatSession:
    return ChatSession(user_id=MANAGER_ID, role=UserRole.MANAGER, full_name="Maria Manager")


@pytest.fixture
def seeker() -> ChatSession:
    return ChatSession(user_id=SEEKER_ID, role="Seeker", full_name="Sam Seeker")


@pytest.fixture
def make_directory(store, feed, notices, config):
    def factory(session: ChatSession) -> RoomDirectory:
        return RoomDirectory(session, store, feed, notices, config=config, clock=store.now)
    return factory


@pytest.fixture
def make_room_session(store, feed, broadcast, storage, notices, config, scheduler):
    async def factory(session: ChatSession, directory: RoomDirectory, counterparty_id: str) -> RoomSession:
        rooms = await directory.list_rooms()
        room = next(r for r in rooms if r.counterparty_id == counterparty_id)
        room_session = RoomSession(
            session, room, store, feed, broadcast, storage,
            notices=notices, directory=directory, config=config,
            scheduler=scheduler, clock=store.now,
        )
        await room_session.open()
        return room_session
    return factory
