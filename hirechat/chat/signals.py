# =============================================================================
# File: hirechat/chat/signals.py
# Description: In-process change signal connecting directory and aggregator
# =============================================================================

import logging
from typing import Callable, List

log = logging.getLogger("hirechat.chat.signals")

Listener = Callable[[], None]


class ChangeSignal:
    """
    Tiny synchronous observer list.

    Mutations (mark read, status change, local send) notify here instead of
    calling the notification aggregator directly. A failing listener is
    logged and does not stop the others.
    """

    def __init__(self, name: str = "change"):
        self.name = name
        self._listeners: List[Listener] = []

    def connect(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def disconnect(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as error:
                log.error(f"Listener of signal '{self.name}' failed: {error}", exc_info=True)
