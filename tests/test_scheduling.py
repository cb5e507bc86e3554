# =============================================================================
# File: tests/test_scheduling.py
# Description: Timers, background tasks, coalesced runs, signals and notices
# =============================================================================

import asyncio
import logging

import pytest

from hirechat.chat.enums import NoticeLevel
from hirechat.chat.notices import NoticeBoard
from hirechat.chat.scheduling import BackgroundTasks, CancellableTimer, CoalescingRunner, LoopScheduler
from hirechat.chat.signals import ChangeSignal

from tests.fakes.manual_scheduler import ManualScheduler

pytestmark = pytest.mark.unit


class TestCancellableTimer:

    def test_restart_pushes_deadline(self):
        scheduler = ManualScheduler()
        fired = []
        timer = CancellableTimer(scheduler, 2.0, lambda: fired.append(scheduler.now))

        timer.start()
        scheduler.advance(1.5)
        timer.start()
        scheduler.advance(1.5)
        assert fired == []
        scheduler.advance(0.5)
        assert fired == [3.5]
        assert not timer.active

    def test_disposed_timer_never_fires(self):
        scheduler = ManualScheduler()
        fired = []
        timer = CancellableTimer(scheduler, 1.0, lambda: fired.append(True))
        timer.start()
        timer.dispose()
        timer.start()
        scheduler.advance(10)
        assert fired == []
        assert timer.disposed

    async def test_loop_scheduler(self):
        fired = asyncio.Event()
        timer = CancellableTimer(LoopScheduler(), 0.01, fired.set)
        timer.start()
        await asyncio.wait_for(fired.wait(), timeout=1)


class TestBackgroundTasks:

    async def test_failure_is_logged_not_raised(self, caplog):
        tasks = BackgroundTasks("test")

        async def boom():
            raise RuntimeError("exploded")

        with caplog.at_level(logging.ERROR, logger="hirechat.chat.scheduling"):
            tasks.spawn(boom(), name="boom")
            await tasks.drain()
        assert len(tasks) == 0
        assert "exploded" in caplog.text

    async def test_cancel_all(self):
        tasks = BackgroundTasks("test")
        task = tasks.spawn(asyncio.sleep(60))
        await tasks.cancel_all()
        assert task.cancelled()


class TestCoalescingRunner:

    async def test_burst_collapses_into_one_follow_up(self):
        gate = asyncio.Event()
        calls = []

        async def job():
            calls.append(len(calls))
            await gate.wait()

        runner = CoalescingRunner(job, BackgroundTasks("test"), "job")
        first = runner.request()
        await asyncio.sleep(0)
        for _ in range(5):
            assert runner.request() is first

        gate.set()
        await runner.wait()
        assert runner.run_count == 2
        assert not runner.running

    async def test_failing_job_does_not_break_runner(self):
        attempts = []

        async def job():
            attempts.append(True)
            raise RuntimeError("db down")

        runner = CoalescingRunner(job, BackgroundTasks("test"), "job")
        runner.request()
        await runner.wait()
        runner.request()
        await runner.wait()
        assert len(attempts) == 2


def test_change_signal_isolates_failing_listener():
    signal = ChangeSignal("test")
    received = []

    def broken():
        raise ValueError("listener bug")

    signal.connect(broken)
    signal.connect(lambda: received.append(1))
    signal.connect(broken)
    signal.notify()

    assert received == [1]
    assert signal.listener_count == 2
    signal.disconnect(broken)
    assert signal.listener_count == 1


def test_notice_board_dismiss():
    board = NoticeBoard()
    first = board.push("Failed to send", "offline")
    board.push("Upload failed", level=NoticeLevel.WARNING)

    assert board.dismiss(first.id)
    assert not board.dismiss(first.id)
    assert board.latest.title == "Upload failed"
    board.clear()
    assert len(board) == 0 and board.latest is None
