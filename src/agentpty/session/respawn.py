"""Shell respawn after a direct CLI exits.

A directly spawned agent CLI leaves nothing behind when it exits. If a UI
still owns the session, a login shell is started under the same session
id so the terminal stays usable; the UI sees "ready" again, never "exited".
"""

from __future__ import annotations

import logging
from typing import Callable

from agentpty.pty.factory import PtyFactory
from agentpty.pty.process import ExitInfo, PtyProcess
from agentpty.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

AttachListeners = Callable[[str, PtyProcess], None]
Announce = Callable[[str], None]


class RespawnCoordinator:
    """Replaces an exited direct-CLI handle with a shell.

    Args:
        factory: Spawns the replacement shell.
        registry: Checked for the owner and the handle's currency.
        attach: Arms data/exit listeners on the replacement handle.
        announce: Broadcasts that the session is ready again.
        is_quitting: While true, nothing is respawned.
    """

    def __init__(
        self,
        factory: PtyFactory,
        registry: SessionRegistry,
        attach: AttachListeners,
        announce: Announce,
        is_quitting: Callable[[], bool] = lambda: False,
    ) -> None:
        self._factory = factory
        self._registry = registry
        self._attach = attach
        self._announce = announce
        self._is_quitting = is_quitting

    def install(self) -> None:
        self._factory.set_direct_exit_hook(self.on_direct_exit)

    def on_direct_exit(
        self, session_id: str, handle: PtyProcess, cwd: str, info: ExitInfo
    ) -> PtyProcess | None:
        """Respawn a shell for ``session_id``. Returns the replacement, if any.

        When nothing is respawned the exited handle stays current, so the
        regular exit path still runs its cleanup.
        """
        if self._is_quitting():
            return None
        if not self._registry.is_current(session_id, handle):
            logger.debug("Not respawning %s: handle #%d is stale", session_id, handle.serial)
            return None
        if self._registry.owner(session_id) is None:
            logger.debug("Not respawning %s: no owner", session_id)
            return None

        try:
            replacement = self._factory.start_local(
                session_id, cwd=cwd, cols=handle.cols, rows=handle.rows
            )
        except Exception as e:
            logger.warning("Failed to spawn shell after CLI exit for %s: %s", session_id, e)
            return None

        logger.info(
            "Respawned shell for %s after CLI exit (code=%s): #%d -> #%d",
            session_id,
            info.exit_code,
            handle.serial,
            replacement.serial,
        )
        self._registry.clear_listeners(session_id)
        self._attach(session_id, replacement)
        self._announce(session_id)
        return replacement
