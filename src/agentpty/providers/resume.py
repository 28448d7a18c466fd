"""Decide whether a provider session should resume previous state.

Resuming a CLI that has never run in a directory makes some providers
fail or show an empty picker, so main sessions only resume when the
provider has stored state for the working directory.
"""

from __future__ import annotations

import hashlib
import logging
import re
import sys
from pathlib import Path

from agentpty.providers.registry import get_provider
from agentpty.pty.wsl import is_wsl_path, to_wsl_posix_path
from agentpty.session.ids import is_chat_pty, parse_pty_id

logger = logging.getLogger(__name__)

# CLIs that keep per-directory sessions under ~/.claude/projects
_PROJECT_STATE_CLIS = ("claude", "aider")

_SEPARATORS_RE = re.compile(r"[/\\]")


def _effective_cwd(cwd: str, platform: str) -> str:
    # Inside WSL the CLI sees the POSIX path, not the UNC one.
    if platform == "win32" and is_wsl_path(cwd):
        return to_wsl_posix_path(cwd)
    return cwd


def has_project_state(cwd: str, home: Path | None = None, platform: str = sys.platform) -> bool:
    """True when ``~/.claude/projects`` holds a session directory for ``cwd``."""
    effective = _effective_cwd(cwd, platform)
    projects = (home or Path.home()) / ".claude" / "projects"

    hashed = hashlib.sha256(effective.encode("utf-8")).hexdigest()[:16]
    if (projects / hashed).exists():
        return True
    if (projects / _SEPARATORS_RE.sub("-", effective)).exists():
        return True
    if not projects.is_dir():
        return False

    parts = [p for p in _SEPARATORS_RE.split(effective) if p]
    tail = "-".join(parts[-3:])
    if not tail:
        return False
    try:
        return any(tail in entry.name for entry in projects.iterdir())
    except OSError as e:
        logger.debug("Cannot scan %s: %s", projects, e)
        return False


def should_skip_resume(
    session_id: str,
    *,
    cwd: str | None,
    shell: str | None,
    skip_resume: bool | None,
    home: Path | None = None,
    platform: str = sys.platform,
) -> bool:
    """Resolve the effective ``skip_resume`` for a local start."""
    if is_chat_pty(session_id):
        # Extra chats share the provider's directory-scoped state unless the
        # provider isolates sessions by id.
        parsed = parse_pty_id(session_id)
        provider = get_provider(parsed.provider_id) if parsed else None
        if provider is None or not provider.session_id_flag:
            return True
        return bool(skip_resume)

    if skip_resume is not None:
        return skip_resume

    if not cwd or not shell:
        return False
    if not any(cli in shell for cli in _PROJECT_STATE_CLIS):
        return False
    try:
        return not has_project_state(cwd, home=home, platform=platform)
    except (OSError, ValueError) as e:
        logger.debug("Session state check failed for %s: %s", cwd, e)
        return False
