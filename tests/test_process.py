"""Smoke tests for agentpty.pty.process against a real pseudo-terminal."""

from __future__ import annotations

import asyncio
import os
import sys

import pytest

from agentpty.errors import SpawnError
from agentpty.pty.process import ExitInfo, PtyProcess, PtyStatus
from agentpty.pty.spawn_config import SpawnConfig

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX pty")


class TestExitInfo:
    def test_clean_exit(self) -> None:
        assert ExitInfo.from_returncode(0) == ExitInfo(0, None)

    def test_signal_exit(self) -> None:
        assert ExitInfo.from_returncode(-15) == ExitInfo(143, 15)

    def test_unknown(self) -> None:
        assert ExitInfo.from_returncode(None).exit_code is None

    def test_payload(self) -> None:
        assert ExitInfo(1).to_payload() == {"exitCode": 1, "signal": None}


def _sh(script: str, cwd: str) -> SpawnConfig:
    return SpawnConfig(
        command="/bin/sh", args=("-c", script), cwd=cwd, shell=None, use_shell_wrapper=False
    )


async def _run(proc: PtyProcess) -> tuple[str, ExitInfo]:
    loop = asyncio.get_running_loop()
    done: asyncio.Future[ExitInfo] = loop.create_future()
    chunks: list[str] = []
    proc.on_data(chunks.append)
    proc.on_exit(lambda info: done.done() or done.set_result(info))
    proc.start()
    info = await asyncio.wait_for(done, timeout=15)
    return "".join(chunks), info


@posix_only
class TestPtyProcess:
    async def test_output_and_exit_code(self, tmp_path) -> None:
        proc = PtyProcess("t", _sh("printf 'hello %s' \"$TERM\"; exit 3", str(tmp_path)))
        output, info = await _run(proc)
        assert "hello" in output
        assert info == ExitInfo(3, None)
        assert proc.status is PtyStatus.EXITED
        assert not proc.alive

    async def test_env_overlay_and_cwd(self, tmp_path) -> None:
        config = SpawnConfig(
            command="/bin/sh",
            args=("-c", 'printf "%s|%s" "$AGENTPTY_TEST" "$(pwd)"'),
            cwd=str(tmp_path),
            env={"AGENTPTY_TEST": "yes"},
        )
        output, info = await _run(PtyProcess("t", config))
        assert "yes|" in output
        assert tmp_path.name in output
        assert info.exit_code == 0

    async def test_window_size(self, tmp_path) -> None:
        proc = PtyProcess("t", _sh("stty size", str(tmp_path)), cols=91, rows=27)
        output, _ = await _run(proc)
        assert "27 91" in output

    async def test_terminate_reports_signal(self, tmp_path) -> None:
        proc = PtyProcess("t", _sh("sleep 30", str(tmp_path)))
        loop = asyncio.get_running_loop()
        done: asyncio.Future[ExitInfo] = loop.create_future()
        proc.on_exit(lambda info: done.done() or done.set_result(info))
        proc.start()
        await asyncio.sleep(0.2)
        proc.terminate()
        assert proc.status is PtyStatus.KILLING
        info = await asyncio.wait_for(done, timeout=15)
        assert info.signal is not None
        assert info.exit_code == 128 + info.signal

    async def test_late_exit_listener(self, tmp_path) -> None:
        proc = PtyProcess("t", _sh("exit 0", str(tmp_path)))
        await _run(proc)
        late: asyncio.Future[ExitInfo] = asyncio.get_running_loop().create_future()
        proc.on_exit(late.set_result)
        assert await asyncio.wait_for(late, timeout=1) == ExitInfo(0, None)

    async def test_write_after_exit_is_dropped(self, tmp_path) -> None:
        proc = PtyProcess("t", _sh("exit 0", str(tmp_path)))
        await _run(proc)
        proc.write("ignored")
        proc.resize(10, 10)
        proc.force_kill()

    async def test_spawn_failure(self, tmp_path) -> None:
        config = SpawnConfig(command=str(tmp_path / "missing"), args=(), cwd=str(tmp_path))
        proc = PtyProcess("t", config)
        with pytest.raises(SpawnError):
            proc.start()

    async def test_serials_are_unique(self, tmp_path) -> None:
        config = _sh("true", str(tmp_path))
        assert PtyProcess("a", config).serial != PtyProcess("a", config).serial

    async def test_many_idle_sessions_do_not_starve_others(self, tmp_path) -> None:
        loop = asyncio.get_running_loop()
        # More idle readers than the default executor has workers
        workers = min(32, (os.cpu_count() or 1) + 4)
        idle = [PtyProcess(f"idle-{i}", _sh("cat", str(tmp_path))) for i in range(workers + 1)]
        idle_exits: list[asyncio.Future[ExitInfo]] = []
        for proc in idle:
            done: asyncio.Future[ExitInfo] = loop.create_future()
            proc.on_exit(lambda info, fut=done: fut.done() or fut.set_result(info))
            idle_exits.append(done)
            proc.start()
        try:
            output, info = await _run(PtyProcess("busy", _sh("printf ready", str(tmp_path))))
            assert "ready" in output
            assert info == ExitInfo(0, None)
            # The default executor is still free for file I/O
            assert await asyncio.wait_for(loop.run_in_executor(None, lambda: 42), timeout=5) == 42
        finally:
            for proc in idle:
                proc.terminate()
            await asyncio.wait_for(asyncio.gather(*idle_exits), timeout=15)
        assert all(not proc.alive for proc in idle)
