# =============================================================================
# File: hirechat/chat/typing_signal.py
# Description: Debounced outgoing typing signal and auto-expiring partner
#              typing indicator for one room
# =============================================================================

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from hirechat.chat.scheduling import BackgroundTasks, CancellableTimer, Scheduler

log = logging.getLogger("hirechat.chat.typing_signal")


class TypingBroadcaster:
    """
    Outgoing typing state of the local user.

    The first keystroke of a burst publishes ``typing=True``; every keystroke
    pushes the idle deadline out; when the deadline passes ``typing=False``
    is published. ``flush()`` ends the burst immediately (used on send).
    """

    def __init__(
            self,
            publish: Callable[[bool], Awaitable[Any]],
            scheduler: Scheduler,
            tasks: BackgroundTasks,
            idle_seconds: float = 2.0,
    ):
        self._publish = publish
        self._tasks = tasks
        self._is_typing = False
        self._idle_timer = CancellableTimer(scheduler, idle_seconds, self._on_idle, name="typing-idle")

    @property
    def is_typing(self) -> bool:
        return self._is_typing

    def keystroke(self) -> None:
        if not self._is_typing:
            self._is_typing = True
            self._emit(True)
        self._idle_timer.start()

    def flush(self) -> None:
        self._idle_timer.cancel()
        if self._is_typing:
            self._is_typing = False
            self._emit(False)

    def dispose(self) -> None:
        self.flush()
        self._idle_timer.dispose()

    def _on_idle(self) -> None:
        if self._is_typing:
            self._is_typing = False
            self._emit(False)

    def _emit(self, is_typing: bool) -> None:
        self._tasks.spawn(self._send(is_typing), name=f"typing-{is_typing}")

    async def _send(self, is_typing: bool) -> None:
        try:
            await self._publish(is_typing)
        except Exception as error:
            # Best effort: a lost typing frame expires on the partner side
            log.warning(f"Typing broadcast failed (typing={is_typing}): {error}")


class PartnerTypingIndicator:
    """
    Whether the counterparty is typing right now.

    A ``typing=True`` with no follow-up clears itself after ``timeout_seconds``
    so a dropped ``typing=False`` never leaves the indicator stuck.
    """

    def __init__(
            self,
            self_user_id: str,
            scheduler: Scheduler,
            timeout_seconds: float = 5.0,
            on_change: Optional[Callable[[bool], None]] = None,
    ):
        self._self_user_id = self_user_id
        self._on_change = on_change
        self._typing = False
        self._expiry = CancellableTimer(scheduler, timeout_seconds, self.clear, name="partner-typing")

    @property
    def is_typing(self) -> bool:
        return self._typing

    def update(self, user_id: Optional[str], is_typing: bool) -> bool:
        """Apply a remote typing frame. Returns False when it was ignored."""
        if not user_id or str(user_id) == self._self_user_id or self._expiry.disposed:
            return False
        if is_typing:
            self._expiry.start()
            self._set(True)
        else:
            self.clear()
        return True

    def clear(self) -> None:
        self._expiry.cancel()
        self._set(False)

    def dispose(self) -> None:
        self._expiry.dispose()
        self._typing = False

    def _set(self, value: bool) -> None:
        if self._typing == value:
            return
        self._typing = value
        if self._on_change is not None:
            self._on_change(value)
