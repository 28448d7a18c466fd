"""Wire protocol: decouples pty supervision from the host UI.

Events flow from the supervisor to whoever renders them. The host UI,
the CLI, and tests all subscribe to the same wire.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    PTY_STARTED = "pty_started"
    PTY_EXIT = "pty_exit"
    RUN_START = "run_start"
    RUN_FINISH = "run_finish"
    COMPLETION = "completion"
    PROMPT_SENT = "prompt_sent"
    SPAWN_ERROR = "spawn_error"
    ERROR = "error"
    STATUS = "status"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Async message bus: supervisor -> UI subscribers.

    Single-producer, multi-consumer broadcast.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(event)

    def send_status(self, message: str) -> None:
        self.send(WireEvent(type=EventType.STATUS, data={"message": message}))

    def send_error(self, error: str, session_id: str | None = None) -> None:
        """Report a failure that has no caller to return it to."""
        data: dict[str, Any] = {"error": error}
        if session_id is not None:
            data["id"] = session_id
        self.send(WireEvent(type=EventType.ERROR, data=data))

    def send_pty_started(self, session_id: str) -> None:
        """Broadcast that a session is (again) ready to be attached to."""
        self.send(WireEvent(type=EventType.PTY_STARTED, data={"id": session_id}))

    def send_pty_exit(self, session_id: str, exit_code: int | None, signal: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.PTY_EXIT,
                data={"id": session_id, "exitCode": exit_code, "signal": signal},
            )
        )

    def send_run_start(self, provider_id: str) -> None:
        self.send(WireEvent(type=EventType.RUN_START, data={"provider": provider_id}))

    def send_run_finish(self, provider_id: str, outcome: str, duration_ms: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.RUN_FINISH,
                data={
                    "provider": provider_id,
                    "outcome": outcome,
                    "duration_ms": duration_ms,
                },
            )
        )

    def send_completion(self, provider_id: str, provider_name: str, sound: bool = True) -> None:
        """Ask the host to show a "task complete" notification."""
        self.send(
            WireEvent(
                type=EventType.COMPLETION,
                data={"provider": provider_id, "name": provider_name, "sound": sound},
            )
        )

    def send_prompt_sent(self, provider_id: str) -> None:
        self.send(WireEvent(type=EventType.PROMPT_SENT, data={"provider": provider_id}))

    def send_spawn_error(
        self,
        error: str,
        provider: str,
        task_id: str,
        cwd: str | None = None,
        auto_approve: bool = False,
        has_initial_prompt: bool = False,
    ) -> None:
        self.send(
            WireEvent(
                type=EventType.SPAWN_ERROR,
                data={
                    "error": error,
                    "provider": provider,
                    "task_id": task_id,
                    "cwd": cwd,
                    "auto_approve": auto_approve,
                    "has_initial_prompt": has_initial_prompt,
                },
            )
        )

    def subscribe(self) -> asyncio.Queue[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: asyncio.Queue[WireEvent | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from events."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
