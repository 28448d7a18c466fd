"""Terminal snapshot storage.

Snapshots are opaque payloads produced by the host's terminal emulator
(serialised screen state). They are keyed by session id and stored one
JSON file per session. This store keeps no history: a save replaces the
previous snapshot.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import aiofiles

from agentpty.errors import SnapshotError

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_BYTES = 8 * 1024 * 1024

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


def snapshot_file_name(session_id: str) -> str:
    """Map a session id to a safe file name (``claude:main:t1`` -> ``claude_main_t1.json``)."""
    safe = _UNSAFE_CHARS_RE.sub("_", session_id).strip(".") or "_"
    return f"{safe}.json"


class SnapshotStore:
    """JSON-file snapshot store rooted at ``directory``."""

    def __init__(self, directory: str | Path, max_bytes: int = MAX_SNAPSHOT_BYTES) -> None:
        self.directory = Path(os.path.expanduser(str(directory)))
        self.max_bytes = max_bytes

    def path_for(self, session_id: str) -> Path:
        return self.directory / snapshot_file_name(session_id)

    async def get(self, session_id: str) -> dict[str, Any] | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding malformed snapshot %s", path)
            return None
        if data.get("id") != session_id:
            # Two ids sanitised to the same name; not ours.
            return None
        return data.get("payload")

    def _encode(self, session_id: str, payload: dict[str, Any]) -> str:
        try:
            encoded = json.dumps({"id": session_id, "payload": payload}, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise SnapshotError(f"Snapshot is not serialisable: {e}") from e
        size = len(encoded.encode("utf-8"))
        if size > self.max_bytes:
            raise SnapshotError(f"Snapshot too large ({size} bytes, limit {self.max_bytes})")
        return encoded

    async def save(self, session_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Store ``payload``. Returns ``{"ok": True}`` or ``{"ok": False, "error": ...}``."""
        try:
            encoded = self._encode(session_id, payload)
            self.directory.mkdir(parents=True, exist_ok=True)
            path = self.path_for(session_id)
            tmp = path.with_suffix(".json.tmp")
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(encoded)
            os.replace(tmp, path)
        except (SnapshotError, OSError) as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True}

    async def delete(self, session_id: str) -> None:
        try:
            self.path_for(session_id).unlink()
        except FileNotFoundError:
            pass
