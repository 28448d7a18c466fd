"""Pseudo-terminal processes: spawn configuration, handles, output coalescing."""

from agentpty.pty.process import ExitInfo, PtyProcess, PtyStatus
from agentpty.pty.spawn_config import SpawnConfig, resolve_direct_spawn_config, resolve_spawn_config
from agentpty.pty.coalescer import OutputCoalescer

__all__ = [
    "ExitInfo",
    "PtyProcess",
    "PtyStatus",
    "SpawnConfig",
    "resolve_direct_spawn_config",
    "resolve_spawn_config",
    "OutputCoalescer",
]
