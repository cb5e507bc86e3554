# =============================================================================
# File: hirechat/chat/scheduling.py
# Description: Timers and background task helpers for the messaging core
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Optional, Protocol, Set

log = logging.getLogger("hirechat.chat.scheduling")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Something that can run a callback after a delay (event loop or fake clock)."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback, *args)


class CancellableTimer:
    """
    Restartable one-shot timer.

    ``start()`` replaces any pending run. After ``dispose()`` the timer never
    fires again and ``start()`` is ignored.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], Any], name: str = "timer"):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._name = name
        self._handle: Optional[TimerHandle] = None
        self._disposed = False

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def start(self) -> None:
        if self._disposed:
            log.debug(f"Ignoring start of disposed timer {self._name}")
            return
        self.cancel()
        self._handle = self._scheduler.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def dispose(self) -> None:
        self.cancel()
        self._disposed = True

    def _fire(self) -> None:
        self._handle = None
        if self._disposed:
            return
        self._callback()


class BackgroundTasks:
    """
    Owner of fire-and-forget tasks.

    Keeps strong references until completion and logs failures so nothing
    surfaces as "Task exception was never retrieved".
    """

    def __init__(self, name: str = "hirechat"):
        self._name = name
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error(f"[{self._name}] Background task {task.get_name()} failed: {error}", exc_info=error)

    async def drain(self) -> None:
        """Wait for every task spawned so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class CoalescingRunner:
    """
    Runs an async job at most once at a time.

    Requests arriving while a run is in flight collapse into a single
    follow-up run, so a burst of change events costs two runs, not N.
    """

    def __init__(self, job: Callable[[], Awaitable[Any]], tasks: BackgroundTasks, name: str = "job"):
        self._job = job
        self._tasks = tasks
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._dirty = False
        self.run_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(self) -> asyncio.Task:
        if self.running:
            self._dirty = True
            return self._task
        self._task = self._tasks.spawn(self._run(), name=f"coalesced-{self._name}")
        return self._task

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        while True:
            self._dirty = False
            self.run_count += 1
            try:
                await self._job()
            except Exception as error:
                log.warning(f"Coalesced job {self._name} failed: {error}")
            if not self._dirty:
                return
