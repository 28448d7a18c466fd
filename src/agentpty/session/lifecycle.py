"""Run tracking and finalize-once semantics.

A "run" is the span between the first real start request for a
``provider:task`` key and the session's finalize. Several termination
signals can race for the same session (process exit, owner teardown,
application shutdown, manual kill); only the first one counts.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from agentpty.providers.registry import get_provider, is_valid_provider_id
from agentpty.session.ids import parse_pty_id
from agentpty.session.wire import Wire

logger = logging.getLogger(__name__)


class FinishCause(enum.Enum):
    PROCESS_EXIT = "process_exit"
    APP_QUIT = "app_quit"
    OWNER_DESTROYED = "owner_destroyed"
    MANUAL_KILL = "manual_kill"


class RunOutcome(enum.Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class RunFinish:
    """The accounted end of one run."""

    provider_id: str
    outcome: RunOutcome
    duration_ms: int | None
    notify: bool


def classify_outcome(exit_code: int, signal: int | None) -> RunOutcome:
    """Signalled exits are never errors; a clean nonzero exit is."""
    if exit_code != 0 and signal is None:
        return RunOutcome.ERROR
    return RunOutcome.OK


class RunTracker:
    """Per-run timers plus the per-session ``finalized`` flag.

    Args:
        wire: Receives ``RUN_START``, ``RUN_FINISH`` and ``COMPLETION``.
        notifications: When false, no ``COMPLETION`` event is sent.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        wire: Wire | None = None,
        notifications: bool = True,
        sound: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._wire = wire
        self._notifications = notifications
        self._sound = sound
        self._clock = clock
        self._timers: dict[str, float] = {}
        self._session_providers: dict[str, str] = {}
        self._finalized: set[str] = set()

    def _key_for(self, session_id: str) -> tuple[str, str] | None:
        stored = self._session_providers.get(session_id)
        if stored:
            return stored, f"{stored}:{session_id}"
        parsed = parse_pty_id(session_id)
        if parsed is None:
            return None
        return parsed.provider_id, f"{parsed.provider_id}:{parsed.suffix}"

    def mark_start(self, session_id: str, provider_id: str | None = None) -> bool:
        """Start timing a run. Returns ``False`` if one is already running.

        A start always re-arms finalize for ``session_id``: the session has
        real activity again.
        """
        self._finalized.discard(session_id)

        if provider_id and is_valid_provider_id(provider_id):
            self._session_providers[session_id] = provider_id

        resolved = self._key_for(session_id)
        if resolved is None:
            return False
        provider, key = resolved
        if key in self._timers:
            return False
        self._timers[key] = self._clock()
        logger.debug("Run started: %s", key)
        if self._wire is not None:
            self._wire.send_run_start(provider)
        return True

    def mark_finish(
        self,
        session_id: str,
        exit_code: int | None,
        signal: int | None,
        cause: FinishCause,
    ) -> RunFinish | None:
        """Finalize ``session_id`` once. Later calls are no-ops.

        A missing exit code means the process was torn down during cleanup,
        not a real completion: the timer is dropped with no accounting.
        """
        if session_id in self._finalized:
            logger.debug("Already finalized: %s (%s)", session_id, cause.value)
            return None
        self._finalized.add(session_id)

        resolved = self._key_for(session_id)
        self._session_providers.pop(session_id, None)
        if resolved is None:
            return None
        provider, key = resolved
        started = self._timers.pop(key, None)

        if exit_code is None:
            return None

        duration_ms = None
        if started is not None:
            duration_ms = max(0, int((self._clock() - started) * 1000))
        outcome = classify_outcome(exit_code, signal)
        notify = cause == FinishCause.PROCESS_EXIT and exit_code == 0
        finish = RunFinish(provider, outcome, duration_ms, notify)
        logger.info(
            "Run finished: %s outcome=%s duration_ms=%s cause=%s",
            key,
            outcome.value,
            duration_ms,
            cause.value,
        )

        if self._wire is not None:
            self._wire.send_run_finish(provider, outcome.value, duration_ms)
            if notify and self._notifications:
                definition = get_provider(provider)
                name = definition.name if definition else provider
                self._wire.send_completion(provider, name, sound=self._sound)
        return finish

    def is_finalized(self, session_id: str) -> bool:
        return session_id in self._finalized

    def is_running(self, key: str) -> bool:
        return key in self._timers

    def provider_for(self, session_id: str) -> str | None:
        resolved = self._key_for(session_id)
        return resolved[0] if resolved else None
