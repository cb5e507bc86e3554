# =============================================================================
# File: tests/test_room_session.py
# Description: Room session lifecycle, optimistic send, reactions, typing
# =============================================================================

import asyncio

import pytest

from hirechat.chat.enums import RoomSessionState
from hirechat.chat.exceptions import SessionClosedError
from hirechat.chat.room_session import RoomSession
from hirechat.chat.value_objects import OutgoingAttachment, RowFilter
from hirechat.common.enums.enums import Table

from tests.conftest import MANAGER_ID, PROJECT_ID, SECOND_SEEKER_ID, SEEKER_ID
from tests.fakes.fake_object_storage import FakeObjectStorage

pytestmark = pytest.mark.unit

CHANNEL = f"room:{PROJECT_ID}:{SEEKER_ID}"


def message_row(sender: str, receiver: str, content: str = "hello", **extra) -> dict:
    return {"project_id": PROJECT_ID, "sender_id": sender, "receiver_id": receiver, "content": content, **extra}


@pytest.fixture
def seeker_directory(seeker, make_directory):
    return make_directory(seeker)


@pytest.fixture
async def seeker_room(seeker, seeker_directory, make_room_session):
    session = await make_room_session(seeker, seeker_directory, MANAGER_ID)
    yield session
    await session.close()
    await seeker_directory.stop()


class TestOpen:

    async def test_loads_recent_history_between_the_two_parties(self, store, seeker, make_directory, make_room_session):
        store.seed(Table.MESSAGES, [
            message_row(MANAGER_ID if i % 2 else SEEKER_ID, SEEKER_ID if i % 2 else MANAGER_ID, f"msg {i}")
            for i in range(60)
        ])
        store.seed(Table.MESSAGES, [message_row(MANAGER_ID, SECOND_SEEKER_ID, "other room")])

        session = await make_room_session(seeker, make_directory(seeker), MANAGER_ID)

        assert session.state == RoomSessionState.LIVE
        assert len(session.messages) == 50
        assert session.messages[0].content == "msg 10"
        assert session.messages[-1].content == "msg 59"
        assert all(m.content != "other room" for m in session.messages)

    async def test_history_failure_leaves_session_closed(self, store, feed, notices, seeker, make_directory,
                                                         make_room_session):
        store.configure_failure("select:messages", "statement timeout")

        session = await make_room_session(seeker, make_directory(seeker), MANAGER_ID)

        assert session.state == RoomSessionState.CLOSED
        assert session.load_failed
        assert notices.latest.title == "Failed to load messages"
        assert feed.subscriber_count(Table.MESSAGES) == 0

    async def test_retry_after_failure(self, store, seeker, make_directory, make_room_session):
        store.configure_failure("select:messages", "statement timeout")
        session = await make_room_session(seeker, make_directory(seeker), MANAGER_ID)
        store.clear_failure("select:messages")

        assert await session.open()
        assert session.is_live
        assert not session.load_failed

    async def test_late_event_of_previous_activation_is_dropped(self, store, feed, seeker_room):
        stale_handler = next(r.handler for r in feed.registrations if r.table == Table.MESSAGES)
        await seeker_room.close()
        await seeker_room.open()
        feed.paused = True
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))

        stale_handler(feed.pending[0])

        assert seeker_room.messages == []

    async def test_closed_session_ignores_feed(self, store, seeker_room):
        await seeker_room.close()
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))
        assert seeker_room.messages == []
        assert seeker_room.state == RoomSessionState.CLOSED


class TestSend:

    async def test_feed_before_response_shows_one_message(self, store, seeker_room):
        assert await seeker_room.send("Hello there")

        assert [m.id for m in seeker_room.messages] == ["m1"]
        assert not seeker_room.messages[0].is_provisional
        assert store.find(Table.MESSAGES, "m1")["receiver_id"] == MANAGER_ID

    async def test_response_before_feed_shows_one_message(self, feed, seeker_room):
        feed.paused = True
        assert await seeker_room.send("Hello there")
        assert [m.id for m in seeker_room.messages] == ["m1"]

        feed.flush()
        feed.redeliver_last()
        assert [m.id for m in seeker_room.messages] == ["m1"]

    async def test_lost_response_after_feed_confirmation_is_success(self, store, notices, seeker_room):
        store.configure_failure("insert", "connection reset", after_commit=True)

        assert await seeker_room.send("Hello there")

        assert [m.id for m in seeker_room.messages] == ["m1"]
        assert len(notices) == 0

    async def test_identical_message_from_other_tab_stands_in(self, store, storage, notices, seeker_room):
        storage.upload_gate = asyncio.Event()
        task = asyncio.create_task(
            seeker_room.send("Thanks", OutgoingAttachment("a.txt", b"a", "text/plain"))
        )
        await asyncio.sleep(0)
        await store.insert(Table.MESSAGES, message_row(SEEKER_ID, MANAGER_ID, "Thanks"))
        store.configure_failure("insert", "connection reset")
        storage.upload_gate.set()

        assert await task

        assert [m.id for m in seeker_room.messages] == ["m1"]
        assert len(notices) == 0

    async def test_offline_send_restores_draft(self, store, notices, seeker_room):
        store.configure_failure("insert", "network unreachable")

        assert not await seeker_room.send("Are you there?")

        assert seeker_room.messages == []
        assert seeker_room.draft == "Are you there?"
        assert notices.latest.title == "Failed to send"
        assert store.rows(Table.MESSAGES) == []

    async def test_failed_text_goes_before_newer_draft(self, storage, notices, seeker_room):
        storage.upload_gate = asyncio.Event()
        storage.configure_failure("bucket unavailable")
        attachment = OutgoingAttachment("cv.pdf", b"%PDF-1.7", "application/pdf")

        task = asyncio.create_task(seeker_room.send("see attached", attachment))
        await asyncio.sleep(0)
        assert seeker_room.messages[0].is_provisional
        seeker_room.on_input("one more thing")
        storage.upload_gate.set()

        assert not await task
        assert seeker_room.draft == "see attached\none more thing"
        assert notices.latest.title == "Upload failed"
        assert seeker_room.messages == []

    async def test_cancelled_send_rolls_back(self, storage, notices, seeker_room):
        storage.upload_gate = asyncio.Event()
        task = asyncio.create_task(seeker_room.send("draft", OutgoingAttachment("a.png", b"png", "image/png")))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert seeker_room.messages == []
        assert seeker_room.draft == "draft"
        assert notices.latest.title == "Sending cancelled"

    async def test_attachment_is_uploaded_under_room_path(self, store, storage, seeker_room):
        assert await seeker_room.send(None, OutgoingAttachment("cv.pdf", b"%PDF-1.7", "application/pdf"))

        (path, (content, content_type)), = storage.objects.items()
        assert path.startswith(f"chat-attachments/{PROJECT_ID}/temp-")
        assert path.endswith("-cv.pdf")
        row = store.find(Table.MESSAGES, "m1")
        assert row["file_url"] == f"{FakeObjectStorage.BASE_URL}/{path}"
        assert row["file_type"] == "application/pdf"
        assert row["content"] is None

    async def test_oversized_attachment_is_rejected_before_upload(self, storage, notices, seeker_room):
        too_big = OutgoingAttachment("video.mp4", b"\0" * (10 * 1024 * 1024 + 1), "video/mp4")

        assert not await seeker_room.send("watch this", too_big)

        assert storage.upload_count == 0
        assert seeker_room.messages == []
        assert notices.latest.title == "File too large"

    async def test_blank_message_is_not_sent(self, store, seeker_room):
        assert not await seeker_room.send("   ")
        assert not store.was_called("insert")

    async def test_send_on_closed_session_raises(self, store, feed, broadcast, storage, seeker, make_directory):
        directory = make_directory(seeker)
        room = (await directory.list_rooms())[0]
        session = RoomSession(seeker, room, store, feed, broadcast, storage)
        with pytest.raises(SessionClosedError):
            await session.send("hi")


class TestRemoteChanges:

    async def test_partner_message_is_shown_and_marked_read(self, store, seeker_room, seeker_directory):
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID, "Welcome"))
        assert [m.content for m in seeker_room.messages] == ["Welcome"]

        await seeker_directory.list_rooms()
        assert store.find(Table.MESSAGES, "m1")["is_read"] is True

    async def test_redelivered_insert_is_ignored(self, store, feed, seeker_room):
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))
        feed.redeliver_last()
        assert len(seeker_room.messages) == 1

    async def test_message_of_another_pair_is_not_shown(self, store, seeker_room):
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SECOND_SEEKER_ID))
        assert seeker_room.messages == []

    async def test_update_and_delete(self, store, seeker_room):
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))
        await store.update(
            Table.MESSAGES,
            {"reactions": [{"user_id": MANAGER_ID, "emoji": "🎉"}]},
            [RowFilter.eq("id", "m1")],
        )
        assert seeker_room.messages[0].reactions[0].emoji == "🎉"

        await store.delete(Table.MESSAGES, [RowFilter.eq("id", "m1")])
        assert seeker_room.messages == []

    async def test_partner_message_clears_typing(self, store, broadcast, seeker_room):
        await broadcast.publish(CHANNEL, {"event": "typing", "user_id": MANAGER_ID, "typing": True})
        assert seeker_room.partner_typing

        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))
        assert not seeker_room.partner_typing


class TestReactions:

    @pytest.fixture
    async def message_id(self, store, seeker_room, seeker_directory):
        await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID, "Nice CV"))
        await seeker_directory.list_rooms()
        return "m1"

    async def test_toggle_twice_is_idempotent(self, store, seeker_room, message_id):
        assert await seeker_room.toggle_reaction(message_id, "👍")
        assert store.find(Table.MESSAGES, message_id)["reactions"] == [
            {"user_id": SEEKER_ID, "emoji": "👍", "full_name": "Sam Seeker"}
        ]
        summary, = seeker_room.reaction_summaries[message_id]
        assert summary.viewer_reacted and summary.count == 1

        assert await seeker_room.toggle_reaction(message_id, "👍")
        assert store.find(Table.MESSAGES, message_id)["reactions"] == []
        assert seeker_room.messages[0].reactions == []

    async def test_rapid_toggles_converge_on_last(self, store, seeker_room, message_id):
        store.update_gate = asyncio.Event()

        first = asyncio.create_task(seeker_room.toggle_reaction(message_id, "👍"))
        await asyncio.sleep(0)
        second = asyncio.create_task(seeker_room.toggle_reaction(message_id, "👍"))
        third = asyncio.create_task(seeker_room.toggle_reaction(message_id, "👍"))
        await asyncio.sleep(0)
        store.update_gate.set()
        await asyncio.gather(first, second, third)

        expected = [{"user_id": SEEKER_ID, "emoji": "👍", "full_name": "Sam Seeker"}]
        assert store.find(Table.MESSAGES, message_id)["reactions"] == expected
        assert seeker_room.messages[0].reactions_payload() == expected
        reaction_writes = [c for c in store.get_calls("update") if "reactions" in c.kwargs["values"]]
        assert len(reaction_writes) == 2

    async def test_failed_write_reverts(self, store, notices, seeker_room, message_id):
        store.configure_failure("update:messages", "permission denied")

        assert not await seeker_room.toggle_reaction(message_id, "👍")

        assert seeker_room.messages[0].reactions == []
        assert notices.latest.title == "Failed to react"

    async def test_write_bookkeeping_is_released(self, store, seeker_room, message_id):
        store.update_gate = asyncio.Event()
        first = asyncio.create_task(seeker_room.toggle_reaction(message_id, "👍"))
        await asyncio.sleep(0)
        second = asyncio.create_task(seeker_room.toggle_reaction(message_id, "🎉"))
        await asyncio.sleep(0)
        assert message_id in seeker_room._reaction_locks

        store.update_gate.set()
        await asyncio.gather(first, second)
        assert seeker_room._reaction_locks == {}
        assert seeker_room._reaction_versions == {}
        assert seeker_room._reaction_baseline == {}

        store.configure_failure("update:messages", "permission denied")
        assert not await seeker_room.toggle_reaction(message_id, "👍")
        assert seeker_room._reaction_locks == {}
        store.clear_failure("update:messages")

        # Counters restart cleanly after the entries were dropped
        assert await seeker_room.toggle_reaction(message_id, "👍")
        assert [r["emoji"] for r in store.find(Table.MESSAGES, message_id)["reactions"]] == ["🎉"]

    async def test_reopen_clears_reaction_bookkeeping(self, store, seeker_room, message_id):
        store.update_gate = asyncio.Event()
        pending = asyncio.create_task(seeker_room.toggle_reaction(message_id, "👍"))
        await asyncio.sleep(0)

        await seeker_room.open()
        assert seeker_room._reaction_versions == {}
        assert seeker_room._reaction_baseline == {}

        store.update_gate.set()
        await pending
        assert seeker_room._reaction_baseline == {}

    async def test_provisional_message_cannot_be_reacted_to(self, storage, seeker_room):
        storage.upload_gate = asyncio.Event()
        task = asyncio.create_task(seeker_room.send("pending", OutgoingAttachment("a.txt", b"a", "text/plain")))
        await asyncio.sleep(0)

        assert not await seeker_room.toggle_reaction(seeker_room.messages[0].id, "👍")

        storage.upload_gate.set()
        await task


class TestTyping:

    async def test_input_publishes_typing_frames(self, broadcast, scheduler, seeker_room):
        seeker_room.on_input("H")
        seeker_room.on_input("He")
        await seeker_room.drain()
        assert broadcast.published_on(CHANNEL) == [{"event": "typing", "user_id": SEEKER_ID, "typing": True}]

        scheduler.advance(2.0)
        await seeker_room.drain()
        assert broadcast.published_on(CHANNEL)[-1]["typing"] is False
        assert not seeker_room.partner_typing

    async def test_partner_typing_expires(self, broadcast, scheduler, seeker_room):
        await broadcast.publish(CHANNEL, {"event": "typing", "user_id": MANAGER_ID, "typing": True})
        assert seeker_room.partner_typing

        scheduler.advance(5.0)
        assert not seeker_room.partner_typing

    async def test_unrelated_broadcast_is_ignored(self, broadcast, seeker_room):
        await broadcast.publish(CHANNEL, {"event": "presence", "user_id": MANAGER_ID, "typing": True})
        assert not seeker_room.partner_typing

    async def test_close_leaves_channel(self, broadcast, seeker_room):
        assert broadcast.listener_count(CHANNEL) == 1
        await seeker_room.close()
        assert broadcast.listener_count(CHANNEL) == 0


async def test_messages_are_grouped_by_day(store, seeker_room):
    await store.insert(Table.MESSAGES, message_row(MANAGER_ID, SEEKER_ID))
    await seeker_room.send("reply")
    (label, messages), = seeker_room.grouped_messages(now=store.now())
    assert label == "Today"
    assert len(messages) == 2
