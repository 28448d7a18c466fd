"""Tests for session ids, owner channels and the session registry."""

from __future__ import annotations

import gc
import itertools

import pytest

from agentpty.session.ids import is_chat_pty, make_pty_id, parse_pty_id
from agentpty.session.owner import CallbackOwner, QueueOwner
from agentpty.session.registry import SessionRegistry, SessionState, SpawnKind

_serials = itertools.count(1000)


class Handle:
    def __init__(self) -> None:
        self.serial = next(_serials)

    def write(self, data: str) -> None:
        pass

    def resize(self, cols: int, rows: int) -> None:
        pass


# ---------------------------------------------------------------------------
# Ids
# ---------------------------------------------------------------------------


class TestPtyIds:
    def test_make_and_parse(self) -> None:
        pty_id = make_pty_id("claude", "main", "task-1")
        assert pty_id == "claude:main:task-1"
        parsed = parse_pty_id(pty_id)
        assert parsed is not None
        assert (parsed.provider_id, parsed.context, parsed.suffix) == ("claude", "main", "task-1")

    def test_suffix_may_contain_colons(self) -> None:
        parsed = parse_pty_id("codex:chat:a:b")
        assert parsed is not None and parsed.suffix == "a:b"

    @pytest.mark.parametrize(
        "pty_id", ["shell:abc", "nope:main:x", "claude:side:x", "claude:main:", "claude"]
    )
    def test_invalid_ids(self, pty_id: str) -> None:
        assert parse_pty_id(pty_id) is None

    def test_make_rejects_bad_parts(self) -> None:
        with pytest.raises(ValueError):
            make_pty_id("nope", "main", "x")
        with pytest.raises(ValueError):
            make_pty_id("claude", "side", "x")
        with pytest.raises(ValueError):
            make_pty_id("claude", "main", "")

    def test_is_chat(self) -> None:
        assert is_chat_pty("claude:chat:x")
        assert not is_chat_pty("claude:main:x")
        assert not is_chat_pty("shell:x")


# ---------------------------------------------------------------------------
# Owners
# ---------------------------------------------------------------------------


class TestOwnerChannel:
    async def test_queue_owner(self) -> None:
        owner = QueueOwner("ui")
        owner.send("pty:data:x", "hi")
        assert owner.drain() == [("pty:data:x", "hi")]
        assert owner.drain() == []

    def test_send_after_destroy_raises(self) -> None:
        owner = CallbackOwner(lambda c, p: None)
        owner.destroy()
        with pytest.raises(RuntimeError):
            owner.send("x", None)

    def test_destroy_callbacks_fire_once(self) -> None:
        seen: list[str] = []
        owner = CallbackOwner(lambda c, p: None, name="w")
        owner.once_destroyed(lambda o: seen.append(o.name))
        owner.destroy()
        owner.destroy()
        assert seen == ["w"]

    def test_failing_callback_does_not_stop_others(self) -> None:
        seen: list[int] = []

        def boom(_owner) -> None:
            raise ValueError("boom")

        owner = CallbackOwner(lambda c, p: None)
        owner.once_destroyed(boom)
        owner.once_destroyed(lambda o: seen.append(1))
        owner.destroy()
        assert seen == [1]


# ---------------------------------------------------------------------------
# Registry: handles
# ---------------------------------------------------------------------------


class TestRegistryHandles:
    def test_install_creates_active_entry(self) -> None:
        reg = SessionRegistry()
        h = Handle()
        assert reg.install("s", SpawnKind.LOCAL, h, cwd="/p") is None
        entry = reg.get("s")
        assert entry is not None
        assert entry.state == SessionState.ACTIVE
        assert reg.get_handle("s") is h
        assert reg.get_kind("s") == SpawnKind.LOCAL
        assert "s" in reg and len(reg) == 1

    def test_replacement_is_tracked(self) -> None:
        reg = SessionRegistry()
        old, new = Handle(), Handle()
        reg.install("s", SpawnKind.DIRECT, old)
        assert reg.install("s", SpawnKind.DIRECT, new) is old
        assert reg.is_current("s", new)
        assert not reg.is_current("s", old)
        assert reg.was_replaced("s", old)
        assert not reg.was_replaced("s", new)

    def test_reserve_conflict(self) -> None:
        reg = SessionRegistry()
        reg.reserve("s", SpawnKind.LOCAL)
        with pytest.raises(KeyError):
            reg.reserve("s", SpawnKind.LOCAL)

    def test_abandon_only_drops_pending_reservation(self) -> None:
        reg = SessionRegistry()
        entry = reg.reserve("s", SpawnKind.LOCAL)
        assert reg.get("s").state == SessionState.STARTING  # type: ignore[union-attr]
        reg.abandon(entry)
        assert "s" not in reg

        entry = reg.reserve("s", SpawnKind.LOCAL)
        reg.install("s", SpawnKind.LOCAL, Handle())
        reg.abandon(entry)
        assert "s" in reg

    def test_stale_remove_is_ignored(self) -> None:
        reg = SessionRegistry()
        old, new = Handle(), Handle()
        reg.install("s", SpawnKind.DIRECT, old)
        reg.install("s", SpawnKind.DIRECT, new)
        assert reg.remove("s", old) is None
        assert reg.get_handle("s") is new
        assert reg.remove("s", new) is not None
        assert "s" not in reg

    def test_unconditional_remove(self) -> None:
        reg = SessionRegistry()
        reg.install("s", SpawnKind.SSH, Handle())
        assert reg.remove("s") is not None
        assert reg.remove("s") is None

    def test_mark_exiting(self) -> None:
        reg = SessionRegistry()
        reg.install("s", SpawnKind.LOCAL, Handle())
        reg.mark_exiting("s")
        assert reg.get("s").state == SessionState.EXITING  # type: ignore[union-attr]
        reg.mark_exiting("missing")


# ---------------------------------------------------------------------------
# Registry: owners and listeners
# ---------------------------------------------------------------------------


class TestRegistryOwners:
    def test_latest_binding_wins(self) -> None:
        reg = SessionRegistry()
        a, b = QueueOwner("a"), QueueOwner("b")
        reg.bind_owner("s", a)
        reg.bind_owner("s", b)
        assert reg.owner("s") is b
        assert reg.owned_by(a) == []
        assert reg.owned_by(b) == ["s"]

    async def test_send_to_owner(self) -> None:
        reg = SessionRegistry()
        owner = QueueOwner()
        reg.bind_owner("s", owner)
        assert reg.send_to_owner("s", "pty:data:s", "x")
        assert owner.drain() == [("pty:data:s", "x")]

    def test_send_to_destroyed_or_missing_owner(self) -> None:
        reg = SessionRegistry()
        assert not reg.send_to_owner("s", "c", None)
        owner = CallbackOwner(lambda c, p: None)
        reg.bind_owner("s", owner)
        owner.destroy()
        assert not reg.send_to_owner("s", "c", None)

    def test_send_swallows_delivery_errors(self) -> None:
        def boom(channel, payload) -> None:
            raise OSError("gone")

        reg = SessionRegistry()
        owner = CallbackOwner(boom)
        reg.bind_owner("s", owner)
        assert reg.send_to_owner("s", "c", None) is False

    def test_owner_held_weakly(self) -> None:
        reg = SessionRegistry()
        owner = CallbackOwner(lambda c, p: None)
        reg.bind_owner("s", owner)
        del owner
        gc.collect()
        assert reg.owner("s") is None
        assert reg.owned_ids() == []

    def test_release_clears_owner_and_listeners(self) -> None:
        reg = SessionRegistry()
        owner = CallbackOwner(lambda c, p: None)
        reg.bind_owner("s", owner)
        reg.mark_listeners_attached("s")
        assert reg.listeners_attached("s")
        reg.release("s")
        assert reg.owner("s") is None
        assert not reg.listeners_attached("s")

    def test_clear_keeps_handles(self) -> None:
        reg = SessionRegistry()
        owner = CallbackOwner(lambda c, p: None)
        reg.install("s", SpawnKind.LOCAL, Handle())
        reg.bind_owner("s", owner)
        reg.mark_listeners_attached("s")
        reg.clear()
        assert reg.owned_ids() == []
        assert not reg.listeners_attached("s")
        assert "s" in reg
