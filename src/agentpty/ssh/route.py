"""SSH route resolution.

Maps a saved-connection id, an ``ssh-config:<alias>`` id, or an inline
connection config to the ``ssh`` target and argument list.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import unquote

from pydantic import BaseModel, Field

from agentpty.errors import SshRouteError

logger = logging.getLogger(__name__)

SSH_CONFIG_PREFIX = "ssh-config:"
DEFAULT_SSH_PORT = 22

_PERCENT_ESCAPE_RE = re.compile(r"%[0-9A-Fa-f]{2}")


class SshConnectionConfig(BaseModel):
    """A saved (or inline) SSH connection.

    Credentials are not held here; key-based auth only points at a key path
    and agent auth relies on the user's running agent.
    """

    id: str | None = None
    name: str = ""
    host: str
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    username: str | None = None
    private_key_path: str | None = None


@dataclass(frozen=True)
class SshRoute:
    """Where and how to connect: ``ssh <args> <target>``."""

    target: str
    args: list[str] = field(default_factory=list)


class SshConnectionStore:
    """Lookup of saved connections by id (backed by configuration)."""

    def __init__(self, connections: Iterable[SshConnectionConfig] = ()) -> None:
        self._by_id: dict[str, SshConnectionConfig] = {}
        for conn in connections:
            if conn.id:
                self._by_id[conn.id] = conn

    def get(self, connection_id: str) -> SshConnectionConfig | None:
        return self._by_id.get(connection_id)

    def add(self, connection: SshConnectionConfig) -> None:
        if not connection.id:
            raise ValueError("Saved SSH connections need an id")
        self._by_id[connection.id] = connection

    def __len__(self) -> int:
        return len(self._by_id)


def route_for_config(conn: SshConnectionConfig) -> SshRoute:
    """Build the route for a concrete connection config."""
    args: list[str] = []
    if conn.port and conn.port != DEFAULT_SSH_PORT:
        args.extend(["-p", str(conn.port)])
    if conn.private_key_path:
        args.extend(["-i", conn.private_key_path])
    target = f"{conn.username}@{conn.host}" if conn.username else conn.host
    return SshRoute(target=target, args=args)


def _alias_from_connection_id(connection_id: str) -> str | None:
    raw = connection_id[len(SSH_CONFIG_PREFIX):]
    alias = raw
    if _PERCENT_ESCAPE_RE.search(raw):
        # Newer ids percent-encode the alias; older ones store it raw.
        alias = unquote(raw)
    return alias or None


def resolve_ssh_route(
    connection: str | SshConnectionConfig,
    store: SshConnectionStore | None = None,
) -> SshRoute:
    """Resolve a connection id or inline config to an :class:`SshRoute`.

    ``ssh-config:<alias>`` ids connect by alias with no extra arguments so
    the user's OpenSSH config (ProxyJump, keychain options...) applies.
    """
    if isinstance(connection, SshConnectionConfig):
        return route_for_config(connection)

    if connection.startswith(SSH_CONFIG_PREFIX):
        alias = _alias_from_connection_id(connection)
        if alias:
            return SshRoute(target=alias)

    conn = store.get(connection) if store is not None else None
    if conn is None:
        raise SshRouteError(f"SSH connection not found: {connection}")
    return route_for_config(conn)


def build_scp_args(ssh_args: list[str]) -> list[str]:
    """Convert ssh arguments to scp ones (``-p`` port becomes ``-P``)."""
    scp_args: list[str] = []
    i = 0
    while i < len(ssh_args):
        arg = ssh_args[i]
        if arg == "-p" and i + 1 < len(ssh_args):
            scp_args.extend(["-P", ssh_args[i + 1]])
            i += 2
            continue
        if arg in ("-i", "-o", "-F") and i + 1 < len(ssh_args):
            scp_args.extend([arg, ssh_args[i + 1]])
            i += 2
            continue
        i += 1
    return scp_args
