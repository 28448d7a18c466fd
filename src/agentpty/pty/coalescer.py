"""Output coalescing.

High-frequency terminal output is accumulated per session and pushed in
one message per flush window. Only one timer is ever armed per session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_MS = 16

Deliver = Callable[[str, str], None]


class OutputCoalescer:
    """Buffers chunks per session id and flushes them on a fixed delay.

    ``deliver(session_id, text)`` is called at flush time, so the receiver
    is looked up when the data actually leaves, never when it arrived.
    """

    def __init__(self, deliver: Deliver, interval_ms: float = DEFAULT_FLUSH_MS) -> None:
        self._deliver = deliver
        self._interval = interval_ms / 1000.0
        self._buffers: dict[str, list[str]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def push(self, session_id: str, chunk: str) -> None:
        if not chunk:
            return
        self._buffers.setdefault(session_id, []).append(chunk)
        if session_id in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[session_id] = loop.call_later(self._interval, self._on_timer, session_id)

    def _on_timer(self, session_id: str) -> None:
        self._timers.pop(session_id, None)
        self.flush_now(session_id)

    def flush_now(self, session_id: str) -> None:
        """Deliver whatever is buffered for ``session_id`` right away."""
        parts = self._buffers.pop(session_id, None)
        if not parts:
            return
        try:
            self._deliver(session_id, "".join(parts))
        except Exception:
            logger.exception("Output delivery failed for %s", session_id)

    def cancel(self, session_id: str) -> None:
        """Disarm the timer and drop any buffered output."""
        timer = self._timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()
        self._buffers.pop(session_id, None)

    def cancel_all(self) -> None:
        for session_id in list(self._timers):
            self.cancel(session_id)
        self._buffers.clear()

    def pending(self, session_id: str) -> str:
        return "".join(self._buffers.get(session_id, ()))

    def has_timer(self, session_id: str) -> bool:
        return session_id in self._timers
