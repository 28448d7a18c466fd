"""Process factory: spawns pty handles and installs them in the registry.

The factory is the only component that creates :class:`PtyProcess`
objects. It knows how to spawn, look up and kill; deciding *when* to do
so belongs to the supervisor.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from agentpty.config import AgentPtyConfig
from agentpty.errors import DirectSpawnUnsupported
from agentpty.providers.invocation import InvocationFlags
from agentpty.pty.process import ExitInfo, PtyProcess
from agentpty.pty.spawn_config import (
    SpawnConfig,
    build_env_overlay,
    resolve_direct_spawn_config,
    resolve_spawn_config,
)
from agentpty.pty.wsl import host_home
from agentpty.session.registry import SessionRegistry, SpawnKind

logger = logging.getLogger(__name__)

# (session_id, exited_handle, cwd, exit_info)
DirectExitHook = Callable[[str, PtyProcess, str, ExitInfo], None]
ProcessClass = Callable[..., PtyProcess]


class PtyFactory:
    """Spawn, look up and kill pty processes for session ids.

    Args:
        registry: Where started handles are installed.
        config: Sizes, kill grace period and provider overrides.
        process_class: Constructor for handles; swapped out in tests.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: AgentPtyConfig | None = None,
        process_class: ProcessClass = PtyProcess,
    ) -> None:
        self.registry = registry
        self.config = config or AgentPtyConfig()
        self._process_class = process_class
        self._direct_exit_hook: DirectExitHook | None = None
        self._escalations: dict[int, asyncio.TimerHandle] = {}

    def set_direct_exit_hook(self, hook: DirectExitHook | None) -> None:
        """Run ``hook`` first whenever a direct-CLI handle exits."""
        self._direct_exit_hook = hook

    def _size(self, cols: int | None, rows: int | None) -> tuple[int, int]:
        return cols or self.config.pty.default_cols, rows or self.config.pty.default_rows

    def _launch(
        self,
        session_id: str,
        kind: SpawnKind,
        spawn: SpawnConfig,
        cols: int | None,
        rows: int | None,
    ) -> PtyProcess:
        c, r = self._size(cols, rows)
        reservation = None
        if session_id not in self.registry:
            reservation = self.registry.reserve(session_id, kind)
        handle = self._process_class(session_id, spawn, cols=c, rows=r)
        try:
            handle.start()
        except Exception:
            if reservation is not None:
                self.registry.abandon(reservation)
            raise
        self.registry.install(session_id, kind, handle, cwd=spawn.cwd)
        logger.debug("Installed %s handle #%d for %s", kind.value, handle.serial, session_id)
        return handle

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def start_local(
        self,
        session_id: str,
        *,
        cwd: str | None = None,
        shell: str | None = None,
        env: dict[str, str] | None = None,
        cols: int | None = None,
        rows: int | None = None,
        flags: InvocationFlags | None = None,
        shell_setup: str | None = None,
    ) -> PtyProcess:
        """Start a login shell, running a provider CLI first if ``shell`` names one."""
        spawn = resolve_spawn_config(
            cwd,
            shell=shell,
            flags=flags,
            overrides=self.config.providers,
            env=env,
            shell_setup=shell_setup,
            default_shell=self.config.pty.default_shell,
        )
        return self._launch(session_id, SpawnKind.LOCAL, spawn, cols, rows)

    def start_direct(
        self,
        session_id: str,
        provider_id: str,
        *,
        cwd: str,
        cols: int | None = None,
        rows: int | None = None,
        flags: InvocationFlags | None = None,
        env: dict[str, str] | None = None,
        shell_setup: str | None = None,
    ) -> PtyProcess | None:
        """Exec the provider CLI with no shell in between.

        Returns ``None`` when direct spawn is not possible for this target;
        the caller then falls back to :meth:`start_local`.
        """
        try:
            spawn = resolve_direct_spawn_config(
                cwd,
                provider_id,
                flags=flags,
                overrides=self.config.provider_overrides(provider_id),
                env=env,
                shell_setup=shell_setup,
            )
        except DirectSpawnUnsupported as e:
            logger.info("Direct spawn unavailable for %s: %s", session_id, e)
            return None

        handle = self._launch(session_id, SpawnKind.DIRECT, spawn, cols, rows)
        handle.on_exit(lambda info: self._on_direct_exit(session_id, handle, spawn.cwd, info))
        return handle

    def start_ssh(
        self,
        session_id: str,
        *,
        target: str,
        ssh_args: list[str] | None = None,
        cols: int | None = None,
        rows: int | None = None,
        env: dict[str, str] | None = None,
    ) -> PtyProcess:
        """Run an interactive ``ssh -tt`` session in a local pty."""
        spawn = SpawnConfig(
            command="ssh",
            args=("-tt", *(ssh_args or ()), target),
            cwd=host_home(),
            env=build_env_overlay(env),
            shell=None,
            use_shell_wrapper=False,
        )
        return self._launch(session_id, SpawnKind.SSH, spawn, cols, rows)

    def _on_direct_exit(
        self, session_id: str, handle: PtyProcess, cwd: str, info: ExitInfo
    ) -> None:
        hook = self._direct_exit_hook
        if hook is None:
            return
        try:
            hook(session_id, handle, cwd, info)
        except Exception:
            logger.exception("Direct-exit hook failed for %s", session_id)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_handle(self, session_id: str) -> PtyProcess | None:
        return self.registry.get_handle(session_id)

    def get_kind(self, session_id: str) -> SpawnKind | None:
        return self.registry.get_kind(session_id)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def kill(self, session_id: str) -> None:
        """Terminate the session's process and forget its record.

        Sends the graceful signal now and force-kills after the grace
        period if the same handle is still alive. Never raises: the
        process may already be gone.
        """
        entry = self.registry.remove(session_id)
        handle = entry.handle if entry is not None else None
        if handle is None:
            return
        try:
            handle.terminate()
        except Exception as e:
            logger.debug("Terminate failed for %s: %s", session_id, e)
        self._arm_escalation(handle)

    def _arm_escalation(self, handle: PtyProcess) -> None:
        grace = self.config.pty.kill_grace_seconds
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._escalations[handle.serial] = loop.call_later(grace, self._escalate, handle)

    def _escalate(self, handle: PtyProcess) -> None:
        self._escalations.pop(handle.serial, None)
        if not handle.alive:
            return
        logger.warning("%r ignored the graceful signal; force killing", handle)
        try:
            handle.force_kill()
        except Exception as e:
            logger.debug("Force kill failed for %r: %s", handle, e)

    def remove_record(self, session_id: str, handle: PtyProcess | None = None) -> None:
        """Forget the record without signalling (the process already exited)."""
        self.registry.remove(session_id, handle)

    def pending_escalations(self) -> int:
        return len(self._escalations)
