"""Tests for agentpty.session.snapshot."""

from __future__ import annotations

import json

from agentpty.session.snapshot import MAX_SNAPSHOT_BYTES, SnapshotStore, snapshot_file_name


class TestSnapshotFileName:
    def test_sanitised(self) -> None:
        assert snapshot_file_name("claude:main:t1") == "claude_main_t1.json"
        assert snapshot_file_name("../../etc/passwd") == "_.._etc_passwd.json"

    def test_limit(self) -> None:
        assert MAX_SNAPSHOT_BYTES == 8 * 1024 * 1024


class TestSnapshotStore:
    async def test_save_get_delete(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path / "snaps")
        payload = {"version": 1, "data": "\x1b[31mred\x1b[0m", "cols": 80, "rows": 24}
        assert await store.save("claude:main:t1", payload) == {"ok": True}
        assert await store.get("claude:main:t1") == payload
        await store.delete("claude:main:t1")
        assert await store.get("claude:main:t1") is None

    async def test_missing(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        assert await store.get("nope") is None
        await store.delete("nope")

    async def test_save_replaces(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        await store.save("s", {"v": 1})
        await store.save("s", {"v": 2})
        assert await store.get("s") == {"v": 2}
        assert not list(tmp_path.glob("*.tmp"))

    async def test_too_large_is_rejected(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path, max_bytes=64)
        result = await store.save("s", {"data": "x" * 100})
        assert result["ok"] is False
        assert "too large" in result["error"]
        assert await store.get("s") is None

    async def test_unserialisable(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        result = await store.save("s", {"data": object()})
        assert result["ok"] is False

    async def test_colliding_names_do_not_leak(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        await store.save("a:b", {"v": 1})
        assert await store.get("a_b") is None

    async def test_malformed_file(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        store.path_for("s").write_text("{broken")
        assert await store.get("s") is None

    async def test_file_layout(self, tmp_path) -> None:
        store = SnapshotStore(tmp_path)
        await store.save("s", {"v": 1})
        assert json.loads((tmp_path / "s.json").read_text()) == {"id": "s", "payload": {"v": 1}}
