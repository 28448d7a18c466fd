"""Configuration: pydantic models for agentpty settings."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from agentpty.providers.invocation import ProviderOverrides
from agentpty.ssh.route import SshConnectionConfig

logger = logging.getLogger(__name__)

# Per-project settings file, committed alongside the code.
PROJECT_CONFIG_NAME = ".agentpty.json"


class PtyConfig(BaseModel):
    """Pseudo-terminal spawning and teardown."""

    default_cols: int = Field(default=120, ge=1)
    default_rows: int = Field(default=32, ge=1)
    flush_interval_ms: int = Field(
        default=16,
        ge=1,
        description="Output coalescing window before data is pushed to the owner",
    )
    kill_grace_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Time between the graceful signal and the forced kill",
    )
    default_shell: str | None = Field(
        default=None, description="Login shell for local sessions (defaults to $SHELL)"
    )
    disabled: bool = Field(default=False, description="Refuse every pty start")


class NotificationConfig(BaseModel):
    """Completion notifications (rendering happens in the host UI)."""

    enabled: bool = True
    sound: bool = True


class AgentPtyConfig(BaseModel):
    """Top-level agentpty configuration."""

    pty: PtyConfig = Field(default_factory=PtyConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    providers: dict[str, ProviderOverrides] = Field(
        default_factory=dict, description="Per-provider CLI overrides keyed by provider id"
    )
    ssh_connections: list[SshConnectionConfig] = Field(default_factory=list)
    snapshot_dir: str = Field(
        default="~/.agentpty/snapshots", description="Directory for terminal snapshots"
    )

    def provider_overrides(self, provider_id: str) -> ProviderOverrides | None:
        return self.providers.get(provider_id)

    @classmethod
    def load(cls, config_path: str | None = None) -> AgentPtyConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            AGENTPTY_DISABLE_PTY   - "1" refuses every pty start
            AGENTPTY_FLUSH_MS      - Output coalescing window in milliseconds
            AGENTPTY_KILL_GRACE    - Seconds before a graceful kill is forced
            AGENTPTY_SHELL         - Login shell for local sessions
            AGENTPTY_SNAPSHOT_DIR  - Directory for terminal snapshots
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path, encoding="utf-8") as f:
                config_data = json.load(f)

        pty = config_data.get("pty", {})

        if os.environ.get("AGENTPTY_DISABLE_PTY") == "1":
            pty["disabled"] = True

        env_flush = os.environ.get("AGENTPTY_FLUSH_MS")
        if env_flush:
            pty["flush_interval_ms"] = int(env_flush)

        env_grace = os.environ.get("AGENTPTY_KILL_GRACE")
        if env_grace:
            pty["kill_grace_seconds"] = float(env_grace)

        env_shell = os.environ.get("AGENTPTY_SHELL")
        if env_shell:
            pty["default_shell"] = env_shell

        if pty:
            config_data["pty"] = pty

        env_snapshot_dir = os.environ.get("AGENTPTY_SNAPSHOT_DIR")
        if env_snapshot_dir:
            config_data["snapshot_dir"] = env_snapshot_dir

        return cls.model_validate(config_data)


def load_shell_setup(directory: str | None) -> str | None:
    """Return the ``shellSetup`` script from a project's ``.agentpty.json``.

    Unreadable or malformed files are treated as "no setup".
    """
    if not directory:
        return None
    path = Path(directory) / PROJECT_CONFIG_NAME
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return None
    setup = data.get("shellSetup") if isinstance(data, dict) else None
    if isinstance(setup, str) and setup.strip():
        return setup.strip()
    return None
