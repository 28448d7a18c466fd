"""Exception hierarchy for PTY supervision.

Only spawn-time failures surface to callers. Race losses and cleanup
failures are handled where they happen and never raised.
"""

from __future__ import annotations


class AgentPtyError(Exception):
    """Base exception for all agentpty errors."""


class SpawnError(AgentPtyError):
    """A pty process could not be started."""

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Failed to spawn {session_id}: {reason}")


class DirectSpawnUnsupported(AgentPtyError):
    """Direct CLI spawn is not possible for this target; use a shell wrapper."""


class SshRouteError(AgentPtyError):
    """An SSH connection id could not be resolved to a target."""


class SnapshotError(AgentPtyError):
    """A terminal snapshot could not be stored."""


class RemoteCommandError(AgentPtyError):
    """An ``ssh``/``scp`` helper command exited unsuccessfully."""

    def __init__(self, command: str, detail: str):
        self.command = command
        self.detail = detail
        super().__init__(f"{command} failed: {detail}")


class UnsafeArgumentError(AgentPtyError):
    """An argument cannot be passed through ``cmd.exe`` without being reinterpreted."""

    def __init__(self, argument: str):
        self.argument = argument
        super().__init__(f"Argument cannot be passed safely through cmd.exe: {argument!r}")
