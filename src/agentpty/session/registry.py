"""Session registry: the single source of truth for live sessions.

Maps a session id to its current process handle, its owner binding and
its listeners-attached flag. Everything runs on one event loop thread;
there are no locks. Callers that react to asynchronous process events
must ask :meth:`SessionRegistry.is_current` before mutating anything,
because a late callback may belong to a handle that was already killed
or replaced.
"""

from __future__ import annotations

import enum
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Protocol

from agentpty.session.owner import OwnerChannel

logger = logging.getLogger(__name__)


class SpawnKind(enum.Enum):
    LOCAL = "local"
    DIRECT = "direct"
    SSH = "ssh"


class SessionState(enum.Enum):
    """absent -> starting -> active -> exiting -> absent."""

    STARTING = "starting"
    ACTIVE = "active"
    EXITING = "exiting"


class ProcessHandle(Protocol):
    serial: int

    def write(self, data: str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...


@dataclass
class SessionEntry:
    id: str
    kind: SpawnKind
    state: SessionState = SessionState.STARTING
    handle: Any = None
    cwd: str | None = None
    # Serial of the handle the current one replaced, if any
    replaced_serial: int | None = None


class SessionRegistry:
    """Authoritative id -> handle / owner / listener bookkeeping."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionEntry] = {}
        self._owners: dict[str, weakref.ref[OwnerChannel]] = {}
        self._listeners: set[str] = set()

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> SessionEntry | None:
        return self._entries.get(session_id)

    def get_handle(self, session_id: str) -> Any:
        entry = self._entries.get(session_id)
        return entry.handle if entry is not None else None

    def get_kind(self, session_id: str) -> SpawnKind | None:
        entry = self._entries.get(session_id)
        return entry.kind if entry is not None else None

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> list[str]:
        return list(self._entries)

    def reserve(self, session_id: str, kind: SpawnKind) -> SessionEntry:
        """Claim ``session_id`` for a spawn that is about to start.

        Raises ``KeyError`` if the id is already taken; check first.
        """
        if session_id in self._entries:
            raise KeyError(f"Session already registered: {session_id}")
        entry = SessionEntry(id=session_id, kind=kind)
        self._entries[session_id] = entry
        return entry

    def abandon(self, entry: SessionEntry) -> None:
        """Drop a reservation whose spawn failed. No-op if it was superseded."""
        current = self._entries.get(entry.id)
        if current is entry and current.state == SessionState.STARTING:
            del self._entries[entry.id]

    def install(
        self,
        session_id: str,
        kind: SpawnKind,
        handle: ProcessHandle,
        cwd: str | None = None,
    ) -> Any:
        """Make ``handle`` the current handle for ``session_id``.

        Creates the entry if needed. Swapping is a single assignment, so no
        moment exists where both the old and the new handle are current.
        Returns the handle that was replaced, if any.
        """
        entry = self._entries.get(session_id)
        if entry is None:
            entry = SessionEntry(id=session_id, kind=kind)
            self._entries[session_id] = entry
        previous = entry.handle
        entry.handle = handle
        entry.kind = kind
        entry.cwd = cwd
        entry.state = SessionState.ACTIVE
        entry.replaced_serial = previous.serial if previous is not None else None
        if previous is not None:
            logger.debug(
                "Replaced handle for %s: #%s -> #%s", session_id, previous.serial, handle.serial
            )
        return previous

    def is_current(self, session_id: str, handle: ProcessHandle) -> bool:
        entry = self._entries.get(session_id)
        if entry is None or entry.handle is None:
            return False
        return entry.handle.serial == handle.serial

    def was_replaced(self, session_id: str, handle: ProcessHandle) -> bool:
        """True when ``handle`` was directly superseded by the current handle."""
        entry = self._entries.get(session_id)
        return entry is not None and entry.replaced_serial == handle.serial

    def mark_exiting(self, session_id: str) -> None:
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.state = SessionState.EXITING

    def remove(self, session_id: str, handle: ProcessHandle | None = None) -> SessionEntry | None:
        """Remove the entry for ``session_id``.

        With ``handle`` given, only removes when that handle is still
        current; a stale handle never deletes its replacement's entry.
        """
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if handle is not None and not self.is_current(session_id, handle):
            logger.debug("Ignoring stale removal for %s (handle #%s)", session_id, handle.serial)
            return None
        del self._entries[session_id]
        return entry

    # ------------------------------------------------------------------
    # Owners
    # ------------------------------------------------------------------

    def bind_owner(self, session_id: str, owner: OwnerChannel) -> None:
        """Bind (or rebind) the owner. The latest binding always wins."""
        self._owners[session_id] = weakref.ref(owner)

    def unbind_owner(self, session_id: str) -> None:
        self._owners.pop(session_id, None)

    def owner(self, session_id: str) -> OwnerChannel | None:
        ref = self._owners.get(session_id)
        if ref is None:
            return None
        owner = ref()
        if owner is None:
            # Collected without a destroy notification
            del self._owners[session_id]
            return None
        return owner

    def owned_by(self, owner: OwnerChannel) -> list[str]:
        return [sid for sid, ref in self._owners.items() if ref() is owner]

    def owned_ids(self) -> list[str]:
        return list(self._owners)

    def send_to_owner(self, session_id: str, channel: str, payload: Any) -> bool:
        """Push to the bound owner. Never raises; returns whether it was sent."""
        owner = self.owner(session_id)
        if owner is None or owner.destroyed:
            return False
        try:
            owner.send(channel, payload)
            return True
        except Exception as e:
            logger.warning("Send to %s failed for %s on %s: %s", owner, session_id, channel, e)
            return False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def listeners_attached(self, session_id: str) -> bool:
        return session_id in self._listeners

    def mark_listeners_attached(self, session_id: str) -> None:
        self._listeners.add(session_id)

    def clear_listeners(self, session_id: str) -> None:
        self._listeners.discard(session_id)

    def release(self, session_id: str) -> None:
        """Forget owner and listener bookkeeping for ``session_id``."""
        self.unbind_owner(session_id)
        self.clear_listeners(session_id)

    def clear(self) -> None:
        self._owners.clear()
        self._listeners.clear()
