"""Tests for agentpty.ssh (routes, ssh config, remote bootstrap, transfer)."""

from __future__ import annotations

import asyncio
import shlex

import pytest

from agentpty.errors import RemoteCommandError, SshRouteError
from agentpty.providers.invocation import InvocationFlags, ProviderOverrides
from agentpty.ssh import transfer
from agentpty.ssh.config_parser import load_ssh_config, parse_ssh_config, resolve_identity_agent
from agentpty.ssh.remote import build_remote_init, build_remote_provider_invocation
from agentpty.ssh.route import (
    SshConnectionConfig,
    SshConnectionStore,
    SshRoute,
    build_scp_args,
    resolve_ssh_route,
)


# ---------------------------------------------------------------------------
# Route resolution
# ---------------------------------------------------------------------------


class TestResolveSshRoute:
    def test_ssh_config_alias(self) -> None:
        route = resolve_ssh_route("ssh-config:devbox")
        assert route == SshRoute(target="devbox", args=[])

    def test_percent_encoded_alias(self) -> None:
        assert resolve_ssh_route("ssh-config:my%20box").target == "my box"

    def test_raw_alias_with_percent_kept(self) -> None:
        assert resolve_ssh_route("ssh-config:100%done").target == "100%done"

    def test_saved_connection(self) -> None:
        store = SshConnectionStore(
            [
                SshConnectionConfig(
                    id="work",
                    host="10.0.0.5",
                    port=2222,
                    username="me",
                    private_key_path="/home/me/.ssh/id_work",
                )
            ]
        )
        route = resolve_ssh_route("work", store)
        assert route.target == "me@10.0.0.5"
        assert route.args == ["-p", "2222", "-i", "/home/me/.ssh/id_work"]

    def test_default_port_and_no_user(self) -> None:
        route = resolve_ssh_route(SshConnectionConfig(host="example.com"))
        assert route == SshRoute(target="example.com", args=[])

    def test_unknown_id_raises(self) -> None:
        with pytest.raises(SshRouteError, match="SSH connection not found: nope"):
            resolve_ssh_route("nope", SshConnectionStore())

    def test_store_requires_id(self) -> None:
        store = SshConnectionStore()
        with pytest.raises(ValueError):
            store.add(SshConnectionConfig(host="h"))
        store.add(SshConnectionConfig(id="h", host="h"))
        assert len(store) == 1


class TestBuildScpArgs:
    def test_port_flag_renamed(self) -> None:
        assert build_scp_args(["-p", "2222", "-i", "key"]) == ["-P", "2222", "-i", "key"]

    def test_unknown_flags_dropped(self) -> None:
        assert build_scp_args(["-A", "-o", "StrictHostKeyChecking=no"]) == [
            "-o",
            "StrictHostKeyChecking=no",
        ]


# ---------------------------------------------------------------------------
# ssh config
# ---------------------------------------------------------------------------

SSH_CONFIG = """\
# comment
Host *
    ServerAliveInterval 30

Host devbox
    HostName dev.example.com
    User me
    Port 2200
    IdentityFile "~/.ssh/id_dev"
    IdentityAgent ~/.1password/agent.sock

Host other
    HostName other.example.com
"""


class TestSshConfig:
    def test_parse_skips_wildcards(self) -> None:
        hosts = parse_ssh_config(SSH_CONFIG)
        assert [h.host for h in hosts] == ["devbox", "other"]

    def test_parse_directives(self) -> None:
        devbox = parse_ssh_config(SSH_CONFIG)[0]
        assert devbox.hostname == "dev.example.com"
        assert devbox.user == "me"
        assert devbox.port == 2200
        assert devbox.identity_file is not None
        assert devbox.identity_file.endswith("/.ssh/id_dev")
        assert not devbox.identity_file.startswith("~")
        assert devbox.identity_agent is not None
        assert devbox.identity_agent.endswith("/.1password/agent.sock")

    async def test_load_missing_file(self, tmp_path) -> None:
        assert await load_ssh_config(tmp_path / "missing") == []

    async def test_identity_agent_by_alias_or_hostname(self, tmp_path) -> None:
        path = tmp_path / "config"
        path.write_text(SSH_CONFIG)
        assert (await resolve_identity_agent("DEVBOX", path)).endswith("agent.sock")
        assert (await resolve_identity_agent("dev.example.com", path)).endswith("agent.sock")
        assert await resolve_identity_agent("other", path) is None
        assert await resolve_identity_agent("unknown", path) is None


# ---------------------------------------------------------------------------
# Remote bootstrap
# ---------------------------------------------------------------------------


class TestRemoteInit:
    def test_cd_only(self) -> None:
        assert build_remote_init("/srv/app") == "cd '/srv/app'\n"

    def test_nothing(self) -> None:
        assert build_remote_init() == ""

    def test_provider_script(self) -> None:
        provider = build_remote_provider_invocation(
            "codex", InvocationFlags(auto_approve=True)
        )
        assert provider.cli == "codex"
        script = build_remote_init("/srv/app", provider)
        lines = script.splitlines()
        assert lines[0] == "cd '/srv/app'"
        sh_argv = shlex.split(lines[1])
        assert sh_argv[:2] == ["sh", "-c"]
        inner = sh_argv[2]
        assert "command -v 'codex'" in inner
        assert "exec 'codex' '--dangerously-bypass-approvals-and-sandbox'" in inner
        assert "agentpty: codex not found on remote. Install: npm install -g @openai/codex" in inner

    def test_cli_override_with_metacharacters_stays_quoted(self) -> None:
        provider = build_remote_provider_invocation(
            "codex", overrides=ProviderOverrides(cli="'codex-remote;echo'")
        )
        assert provider.cli == "codex-remote;echo"
        script = build_remote_init(None, provider)
        assert "'\\''codex-remote;echo'\\''" in script
        inner = shlex.split(script)[2]
        assert "command -v 'codex-remote;echo'" in inner

    def test_prompt_with_quotes(self) -> None:
        provider = build_remote_provider_invocation(
            "gemini", InvocationFlags(initial_prompt="it's fine")
        )
        inner = shlex.split(build_remote_init(None, provider))[2]
        assert "exec 'gemini' '-i' 'it'\\''s fine'" in inner


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------


class _FakeProcess:
    def __init__(self, returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self.returncode = returncode
        self._stdout = stdout
        self._stderr = stderr

    async def communicate(self) -> tuple[bytes, bytes]:
        return self._stdout, self._stderr

    def kill(self) -> None:
        pass

    async def wait(self) -> int:
        return self.returncode


class TestTransfer:
    async def test_copy_to_remote(self, monkeypatch: pytest.MonkeyPatch) -> None:
        calls: list[tuple[str, list[str]]] = []

        async def fake_run(program: str, args: list[str], timeout: float = 30.0) -> str:
            calls.append((program, args))
            return ""

        monkeypatch.setattr(transfer, "run_remote_command", fake_run)
        route = SshRoute(target="me@host", args=["-p", "2222"])
        paths = await transfer.copy_to_remote(route, ["/tmp/a.png", "/home/me/a.png"])

        assert calls[0] == ("ssh", ["-p", "2222", "me@host", "mkdir -p /tmp/agentpty-images"])
        assert [c[0] for c in calls[1:]] == ["scp", "scp"]
        assert calls[1][1][:2] == ["-P", "2222"]
        assert calls[1][1][2] == "/tmp/a.png"
        assert calls[1][1][3] == f"me@host:{paths[0]}"
        assert len(paths) == 2
        assert paths[0] != paths[1]
        assert all(p.startswith("/tmp/agentpty-images/") and p.endswith("-a.png") for p in paths)

    async def test_nonzero_exit_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_exec(*args, **kwargs):
            return _FakeProcess(1, stderr=b"Permission denied\n")

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
        with pytest.raises(RemoteCommandError, match="ssh failed: Permission denied"):
            await transfer.run_remote_command("ssh", ["host", "true"])

    async def test_stdout_returned(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_exec(*args, **kwargs):
            return _FakeProcess(0, stdout=b"ok\n")

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
        assert await transfer.run_remote_command("ssh", ["host", "true"]) == "ok\n"
