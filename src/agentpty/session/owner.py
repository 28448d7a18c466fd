"""Owner channels: the UI endpoints that receive a session's pushes.

The supervisor only ever holds owners weakly. A channel can be destroyed
at any moment (window closed) and sends to it must never raise.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

_owner_ids = itertools.count(1)


class OwnerChannel:
    """Base push channel.

    Subclasses implement :meth:`_deliver`. Destroy callbacks fire exactly
    once, on the first :meth:`destroy` call.
    """

    def __init__(self, name: str = "") -> None:
        self.id: int = next(_owner_ids)
        self.name = name or f"owner-{self.id}"
        self._destroyed = False
        self._destroy_callbacks: list[Callable[[OwnerChannel], None]] = []

    def __repr__(self) -> str:
        state = "destroyed" if self._destroyed else "live"
        return f"<{type(self).__name__} {self.name} {state}>"

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def send(self, channel: str, payload: Any) -> None:
        if self._destroyed:
            raise RuntimeError(f"{self.name} is destroyed")
        self._deliver(channel, payload)

    def _deliver(self, channel: str, payload: Any) -> None:
        raise NotImplementedError

    def once_destroyed(self, callback: Callable[[OwnerChannel], None]) -> None:
        self._destroy_callbacks.append(callback)

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        callbacks, self._destroy_callbacks = self._destroy_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("Error in destroy callback for %s", self.name)


class QueueOwner(OwnerChannel):
    """Owner that queues ``(channel, payload)`` pairs for an async reader."""

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

    def _deliver(self, channel: str, payload: Any) -> None:
        self.queue.put_nowait((channel, payload))

    def drain(self) -> list[tuple[str, Any]]:
        """Return everything queued so far without waiting."""
        items: list[tuple[str, Any]] = []
        while not self.queue.empty():
            items.append(self.queue.get_nowait())
        return items


class CallbackOwner(OwnerChannel):
    """Owner that forwards pushes to a plain callable."""

    def __init__(self, callback: Callable[[str, Any], None], name: str = "") -> None:
        super().__init__(name)
        self._callback = callback

    def _deliver(self, channel: str, payload: Any) -> None:
        self._callback(channel, payload)
