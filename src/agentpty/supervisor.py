"""PTY supervisor: the request/response and event surface for the host UI.

Every request handler returns a :class:`PtyResult` and never raises.
Fire-and-forget handlers (input, resize, kill) log and carry on.

Termination signals for one session id can arrive in any order: the
process's own exit, a manual kill, the owner window going away, and the
application quitting. Two checks keep that safe. The run tracker
finalizes a session at most once, and exit handlers ignore any handle
that is no longer the registry's current handle for its id.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field

from agentpty.config import AgentPtyConfig, load_shell_setup
from agentpty.providers.invocation import InvocationFlags
from agentpty.providers.registry import get_provider
from agentpty.providers.resume import should_skip_resume
from agentpty.pty.coalescer import OutputCoalescer
from agentpty.pty.factory import PtyFactory, ProcessClass
from agentpty.pty.process import ExitInfo, PtyProcess
from agentpty.session.ids import is_chat_pty, parse_pty_id
from agentpty.session.lifecycle import FinishCause, RunTracker
from agentpty.session.owner import OwnerChannel
from agentpty.session.registry import SessionRegistry, SpawnKind
from agentpty.session.respawn import RespawnCoordinator
from agentpty.session.snapshot import SnapshotStore
from agentpty.session.wire import Wire
from agentpty.ssh.remote import build_remote_init, build_remote_provider_invocation
from agentpty.ssh.route import SshConnectionStore, resolve_ssh_route
from agentpty.ssh.transfer import copy_to_remote

logger = logging.getLogger(__name__)

DISABLED_MESSAGE = "PTY disabled via AGENTPTY_DISABLE_PTY=1"


def data_channel(session_id: str) -> str:
    return f"pty:data:{session_id}"


def exit_channel(session_id: str) -> str:
    return f"pty:exit:{session_id}"


# ---------------------------------------------------------------------------
# Requests / responses
# ---------------------------------------------------------------------------


class RemoteTarget(BaseModel):
    connection_id: str


class StartLocalRequest(BaseModel):
    """Start (or reattach to) a shell-wrapped session."""

    id: str
    cwd: str | None = None
    remote: RemoteTarget | None = None
    shell: str | None = Field(default=None, description="Shell or provider CLI to run")
    env: dict[str, str] | None = None
    cols: int | None = Field(default=None, ge=1)
    rows: int | None = Field(default=None, ge=1)
    auto_approve: bool = False
    initial_prompt: str | None = None
    skip_resume: bool | None = None


class StartDirectRequest(BaseModel):
    """Start a provider CLI without a shell wrapper where possible."""

    id: str
    provider_id: str
    cwd: str
    remote: RemoteTarget | None = None
    cols: int | None = Field(default=None, ge=1)
    rows: int | None = Field(default=None, ge=1)
    auto_approve: bool = False
    initial_prompt: str | None = None
    env: dict[str, str] | None = None
    resume: bool = False


class PtyResult(BaseModel):
    ok: bool
    error: str | None = None
    reused: bool | None = None
    snapshot: dict[str, Any] | None = None
    remote_paths: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class PtySupervisor:
    """Owns every live pty session of the host process.

    Args:
        config: Loaded configuration; defaults when omitted.
        wire: Event bus for broadcasts and run accounting.
        factory: Process factory; built over ``registry`` when omitted.
        snapshots: Snapshot collaborator.
        process_class: Handle constructor for the default factory.
    """

    def __init__(
        self,
        config: AgentPtyConfig | None = None,
        *,
        wire: Wire | None = None,
        registry: SessionRegistry | None = None,
        factory: PtyFactory | None = None,
        snapshots: SnapshotStore | None = None,
        ssh_store: SshConnectionStore | None = None,
        process_class: ProcessClass = PtyProcess,
    ) -> None:
        self.config = config or AgentPtyConfig()
        self._quitting = False
        self.wire = wire or Wire()
        self.registry = registry or (factory.registry if factory else SessionRegistry())
        self.factory = factory or PtyFactory(self.registry, self.config, process_class)
        self.coalescer = OutputCoalescer(self._deliver_output, self.config.pty.flush_interval_ms)
        self.tracker = RunTracker(
            self.wire,
            notifications=self.config.notifications.enabled,
            sound=self.config.notifications.sound,
        )
        self.snapshots = snapshots or SnapshotStore(self.config.snapshot_dir)
        self.ssh_store = ssh_store or SshConnectionStore(self.config.ssh_connections)
        self.respawn = RespawnCoordinator(
            self.factory,
            self.registry,
            attach=self._attach_listeners,
            announce=self.wire.send_pty_started,
            is_quitting=lambda: self._quitting,
        )
        self.respawn.install()
        self._watched_owners: set[int] = set()

    @property
    def quitting(self) -> bool:
        return self._quitting

    # ------------------------------------------------------------------
    # Listener plumbing
    # ------------------------------------------------------------------

    def _deliver_output(self, session_id: str, text: str) -> None:
        self.registry.send_to_owner(session_id, data_channel(session_id), text)

    def _exit_cause(self) -> FinishCause:
        return FinishCause.APP_QUIT if self._quitting else FinishCause.PROCESS_EXIT

    def _attach_listeners(self, session_id: str, handle: PtyProcess) -> None:
        if self.registry.listeners_attached(session_id):
            return
        handle.on_data(lambda chunk: self._on_data(session_id, handle, chunk))
        handle.on_exit(lambda info: self._on_exit(session_id, handle, info))
        self.registry.mark_listeners_attached(session_id)

    def _on_data(self, session_id: str, handle: PtyProcess, chunk: str) -> None:
        if self.registry.is_current(session_id, handle):
            self.coalescer.push(session_id, chunk)

    def _on_exit(self, session_id: str, handle: PtyProcess, info: ExitInfo) -> None:
        try:
            current = self.registry.is_current(session_id, handle)
            # A direct CLI's run ends with its process even when a respawned
            # shell has already taken over the id.
            if current or self.registry.was_replaced(session_id, handle):
                self.tracker.mark_finish(
                    session_id, info.exit_code, info.signal, self._exit_cause()
                )
            if not current:
                logger.debug("Ignoring exit of superseded %r", handle)
                return

            self.registry.mark_exiting(session_id)
            self.coalescer.flush_now(session_id)
            self.coalescer.cancel(session_id)
            self.registry.send_to_owner(session_id, exit_channel(session_id), info.to_payload())
            self.wire.send_pty_exit(session_id, info.exit_code, info.signal)
            self.registry.release(session_id)
            self.factory.remove_record(session_id, handle)
        except Exception as e:
            logger.warning("Exit handling failed for %s: %s", session_id, e)

    def _watch_owner(self, owner: OwnerChannel) -> None:
        if owner.id in self._watched_owners:
            return
        self._watched_owners.add(owner.id)
        owner.once_destroyed(self.owner_destroyed)

    def _bind(self, session_id: str, owner: OwnerChannel) -> None:
        self.registry.bind_owner(session_id, owner)
        self._watch_owner(owner)

    def _report_spawn_error(self, session_id: str, error: Exception, **context: Any) -> PtyResult:
        if session_id not in self.registry:
            self.registry.release(session_id)
        parsed = parse_pty_id(session_id)
        provider = parsed.provider_id if parsed else (context.get("shell") or "unknown")
        task_id = parsed.suffix if parsed else session_id
        self.wire.send_spawn_error(
            str(error),
            provider=provider,
            task_id=task_id,
            cwd=context.get("cwd"),
            auto_approve=bool(context.get("auto_approve")),
            has_initial_prompt=bool(context.get("initial_prompt")),
        )
        return PtyResult(ok=False, error=str(error))

    # ------------------------------------------------------------------
    # Starting sessions
    # ------------------------------------------------------------------

    async def start_local(self, owner: OwnerChannel, request: StartLocalRequest) -> PtyResult:
        """Start a login-shell session, or reattach to a live one."""
        if self.config.pty.disabled:
            return PtyResult(ok=False, error=DISABLED_MESSAGE)
        session_id = request.id
        try:
            if request.remote is not None:
                return self._start_remote(
                    owner,
                    session_id,
                    request.remote.connection_id,
                    cwd=request.cwd,
                    cols=request.cols,
                    rows=request.rows,
                    env=request.env,
                )

            handle = self.factory.get_handle(session_id)
            reused = handle is not None
            if handle is None:
                skip_resume = should_skip_resume(
                    session_id,
                    cwd=request.cwd,
                    shell=request.shell,
                    skip_resume=request.skip_resume,
                )
                handle = self.factory.start_local(
                    session_id,
                    cwd=request.cwd,
                    shell=request.shell,
                    env=request.env,
                    cols=request.cols,
                    rows=request.rows,
                    flags=InvocationFlags(
                        resume=not skip_resume,
                        auto_approve=request.auto_approve,
                        initial_prompt=request.initial_prompt,
                    ),
                    shell_setup=load_shell_setup(request.cwd),
                )

            self._bind(session_id, owner)
            self._attach_listeners(session_id, handle)
            # Counted on reuse too: a respawned shell may run the agent again.
            self.tracker.mark_start(session_id)
            self.wire.send_pty_started(session_id)
            return PtyResult(ok=True, reused=True) if reused else PtyResult(ok=True)
        except Exception as e:
            logger.error(
                "start_local failed for %s (cwd=%s shell=%s): %s",
                session_id,
                request.cwd,
                request.shell,
                e,
            )
            return self._report_spawn_error(
                session_id,
                e,
                cwd=request.cwd,
                shell=request.shell,
                auto_approve=request.auto_approve,
                initial_prompt=request.initial_prompt,
            )

    async def start_direct(self, owner: OwnerChannel, request: StartDirectRequest) -> PtyResult:
        """Start a provider CLI directly, falling back to a shell wrapper."""
        if self.config.pty.disabled:
            return PtyResult(ok=False, error=DISABLED_MESSAGE)
        session_id = request.id
        provider_id = request.provider_id
        try:
            if request.remote is not None:
                return self._start_remote(
                    owner,
                    session_id,
                    request.remote.connection_id,
                    cwd=request.cwd,
                    cols=request.cols,
                    rows=request.rows,
                    env=request.env,
                    provider_id=provider_id,
                    flags=InvocationFlags(
                        resume=request.resume,
                        auto_approve=request.auto_approve,
                        initial_prompt=request.initial_prompt,
                    ),
                )

            if self.factory.get_handle(session_id) is not None:
                self._bind(session_id, owner)
                self.tracker.mark_start(session_id, provider_id)
                return PtyResult(ok=True, reused=True)

            resume = request.resume
            if is_chat_pty(session_id):
                provider = get_provider(provider_id)
                if provider is None or not provider.session_id_flag:
                    resume = False

            flags = InvocationFlags(
                resume=resume,
                auto_approve=request.auto_approve,
                initial_prompt=request.initial_prompt,
            )
            shell_setup = load_shell_setup(request.cwd)
            handle = None
            if not shell_setup:
                handle = self.factory.start_direct(
                    session_id,
                    provider_id,
                    cwd=request.cwd,
                    cols=request.cols,
                    rows=request.rows,
                    flags=flags,
                    env=request.env,
                )

            if handle is None:
                provider = get_provider(provider_id)
                if provider is None or not provider.cli:
                    error = f"CLI path not found for provider: {provider_id}"
                    return PtyResult(ok=False, error=error)
                if not shell_setup:
                    logger.info("Falling back to shell spawn for %s (%s)", session_id, provider_id)
                handle = self.factory.start_local(
                    session_id,
                    cwd=request.cwd,
                    shell=provider.cli,
                    env=request.env,
                    cols=request.cols,
                    rows=request.rows,
                    flags=flags,
                    shell_setup=shell_setup,
                )

            self._bind(session_id, owner)
            self._attach_listeners(session_id, handle)
            self.tracker.mark_start(session_id, provider_id)
            self.wire.send_pty_started(session_id)
            return PtyResult(ok=True)
        except Exception as e:
            logger.error("start_direct failed for %s (%s): %s", session_id, provider_id, e)
            return self._report_spawn_error(
                session_id,
                e,
                cwd=request.cwd,
                shell=provider_id,
                auto_approve=request.auto_approve,
                initial_prompt=request.initial_prompt,
            )

    def _start_remote(
        self,
        owner: OwnerChannel,
        session_id: str,
        connection_id: str,
        *,
        cwd: str | None,
        cols: int | None,
        rows: int | None,
        env: dict[str, str] | None,
        provider_id: str | None = None,
        flags: InvocationFlags | None = None,
    ) -> PtyResult:
        self._bind(session_id, owner)

        if self.factory.get_handle(session_id) is not None:
            if self.factory.get_kind(session_id) is SpawnKind.SSH:
                return PtyResult(ok=True, reused=True)
            # Replace a local session with an ssh-backed one.
            self.tracker.mark_finish(session_id, None, None, FinishCause.MANUAL_KILL)
            self.coalescer.cancel(session_id)
            self.factory.kill(session_id)
            self.registry.clear_listeners(session_id)

        route = resolve_ssh_route(connection_id, self.ssh_store)

        remote_provider = None
        merged_env = env
        if provider_id:
            overrides = self.config.provider_overrides(provider_id)
            remote_provider = build_remote_provider_invocation(provider_id, flags, overrides)
            if overrides is not None and overrides.env:
                merged_env = {**overrides.env, **(env or {})}

        handle = self.factory.start_ssh(
            session_id,
            target=route.target,
            ssh_args=route.args,
            cols=cols,
            rows=rows,
            env=merged_env,
        )
        self._attach_listeners(session_id, handle)

        remote_init = build_remote_init(cwd, remote_provider)
        if remote_init:
            handle.write(remote_init)

        if provider_id:
            self.tracker.mark_start(session_id, provider_id)
        self.wire.send_pty_started(session_id)
        return PtyResult(ok=True)

    # ------------------------------------------------------------------
    # Fire-and-forget
    # ------------------------------------------------------------------

    def write_input(self, session_id: str, data: str) -> None:
        try:
            handle = self.factory.get_handle(session_id)
            if handle is None:
                logger.debug("Input for unknown session %s dropped", session_id)
                return
            handle.write(data)
            if data in ("\r", "\n"):
                provider_id = self.tracker.provider_for(session_id)
                if provider_id:
                    self.wire.send_prompt_sent(provider_id)
        except Exception as e:
            logger.error("write_input failed for %s: %s", session_id, e)
            self.wire.send_error(f"Write failed: {e}", session_id)

    def resize(self, session_id: str, cols: int, rows: int) -> None:
        try:
            handle = self.factory.get_handle(session_id)
            if handle is not None:
                handle.resize(cols, rows)
        except Exception as e:
            logger.error("resize failed for %s (%dx%d): %s", session_id, cols, rows, e)
            self.wire.send_error(f"Resize failed: {e}", session_id)

    def kill(self, session_id: str) -> None:
        """Manual kill: finalize, terminate, unbind."""
        try:
            self.tracker.mark_finish(session_id, None, None, FinishCause.MANUAL_KILL)
            self.coalescer.cancel(session_id)
            self.factory.kill(session_id)
            self.registry.release(session_id)
        except Exception as e:
            logger.error("kill failed for %s: %s", session_id, e)
            self.wire.send_error(f"Kill failed: {e}", session_id)

    # ------------------------------------------------------------------
    # Teardown sweeps
    # ------------------------------------------------------------------

    def owner_destroyed(self, owner: OwnerChannel) -> None:
        """Kill every session bound to ``owner``."""
        self._watched_owners.discard(owner.id)
        cause = FinishCause.APP_QUIT if self._quitting else FinishCause.OWNER_DESTROYED
        for session_id in self.registry.owned_by(owner):
            try:
                self.tracker.mark_finish(session_id, None, None, cause)
                self.coalescer.cancel(session_id)
                self.factory.kill(session_id)
            except Exception as e:
                logger.debug("Teardown of %s failed: %s", session_id, e)
            self.registry.release(session_id)
        logger.debug("Owner %s destroyed", owner)

    def shutdown(self) -> None:
        """Application quit: finalize and kill every session."""
        self._quitting = True
        session_ids = dict.fromkeys([*self.registry.owned_ids(), *self.registry.ids()])
        for session_id in session_ids:
            try:
                self.tracker.mark_finish(session_id, None, None, FinishCause.APP_QUIT)
                self.factory.kill(session_id)
            except Exception as e:
                logger.debug("Shutdown kill of %s failed: %s", session_id, e)
        self.coalescer.cancel_all()
        self.registry.clear()
        logger.info("Shut down %d session(s)", len(session_ids))
        self.wire.send_status(f"Shut down {len(session_ids)} session(s)")

    # ------------------------------------------------------------------
    # Snapshots and file transfer
    # ------------------------------------------------------------------

    async def get_snapshot(self, session_id: str) -> PtyResult:
        try:
            return PtyResult(ok=True, snapshot=await self.snapshots.get(session_id))
        except Exception as e:
            logger.error("get_snapshot failed for %s: %s", session_id, e)
            return PtyResult(ok=False, error=str(e))

    async def save_snapshot(self, session_id: str, payload: dict[str, Any]) -> PtyResult:
        try:
            result = await self.snapshots.save(session_id, payload)
        except Exception as e:
            result = {"ok": False, "error": str(e)}
        if not result["ok"]:
            logger.warning("save_snapshot failed for %s: %s", session_id, result.get("error"))
        return PtyResult(**result)

    async def clear_snapshot(self, session_id: str) -> PtyResult:
        try:
            await self.snapshots.delete(session_id)
        except Exception as e:
            logger.error("clear_snapshot failed for %s: %s", session_id, e)
            return PtyResult(ok=False, error=str(e))
        return PtyResult(ok=True)

    async def scp_to_remote(self, connection_id: str, local_paths: list[str]) -> PtyResult:
        """Copy local files to ``/tmp/agentpty-images`` on the remote."""
        try:
            route = resolve_ssh_route(connection_id, self.ssh_store)
            remote_paths = await copy_to_remote(route, local_paths)
        except Exception as e:
            logger.error("scp_to_remote failed for %s: %s", connection_id, e)
            return PtyResult(ok=False, error=str(e))
        return PtyResult(ok=True, remote_paths=remote_paths)
