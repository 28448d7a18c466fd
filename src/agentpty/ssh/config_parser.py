"""Minimal ``~/.ssh/config`` reader.

Only the directives needed to pick a connect target are understood:
Host, HostName, User, Port, IdentityFile and IdentityAgent. Wildcard host
patterns are skipped.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

import aiofiles

logger = logging.getLogger(__name__)

_DIRECTIVE_RE = re.compile(r"^(\w+)\s+(.+)$")


@dataclass
class SshConfigHost:
    host: str
    hostname: str | None = None
    user: str | None = None
    port: int | None = None
    identity_file: str | None = None
    identity_agent: str | None = None


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _expand_tilde(path: str) -> str:
    if path == "~" or path.startswith("~/"):
        return os.path.expanduser(path)
    return path


def parse_ssh_config(text: str) -> list[SshConfigHost]:
    """Parse ssh config text into host entries."""
    hosts: list[SshConfigHost] = []
    current: SshConfigHost | None = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        m = _DIRECTIVE_RE.match(stripped)
        if not m:
            continue
        key, value = m.group(1).lower(), m.group(2).strip()

        if key == "host":
            if current is not None:
                hosts.append(current)
            current = None if ("*" in value or "?" in value) else SshConfigHost(host=value)
            continue
        if current is None:
            continue

        if key == "hostname":
            current.hostname = value
        elif key == "user":
            current.user = value
        elif key == "port" and value.isdigit():
            current.port = int(value)
        elif key == "identityfile":
            current.identity_file = _expand_tilde(_strip_quotes(value))
        elif key == "identityagent":
            current.identity_agent = _expand_tilde(_strip_quotes(value))

    if current is not None:
        hosts.append(current)
    return hosts


def default_ssh_config_path() -> Path:
    return Path.home() / ".ssh" / "config"


async def load_ssh_config(path: Path | None = None) -> list[SshConfigHost]:
    """Read and parse the user's ssh config; a missing file yields no hosts."""
    path = path or default_ssh_config_path()
    try:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            text = await f.read()
    except OSError:
        return []
    return parse_ssh_config(text)


async def resolve_identity_agent(hostname: str, path: Path | None = None) -> str | None:
    """IdentityAgent socket for ``hostname`` (matched on alias or HostName)."""
    wanted = hostname.lower()
    for host in await load_ssh_config(path):
        if host.host.lower() == wanted or (host.hostname or "").lower() == wanted:
            return host.identity_agent
    return None
