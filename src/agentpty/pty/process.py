"""PTY process handle: one child process on a pseudo-terminal.

A handle is owned by the session registry. It never removes itself from
anything: it only reports output and, exactly once, its exit.

POSIX uses ``pty.openpty`` + ``subprocess.Popen`` (not ``os.fork``, which
can deadlock when forking from inside a running event loop on macOS).
Windows uses pywinpty.

Each handle reads its terminal on a dedicated daemon thread and hands
chunks to the event loop with ``call_soon_threadsafe``. Blocking reads
never occupy the loop's default executor, which stays free for file I/O.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import errno
import itertools
import logging
import os
import signal
import struct
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable

from agentpty.errors import SpawnError
from agentpty.pty.spawn_config import SpawnConfig

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

READ_CHUNK = 64 * 1024

# Monotonic handle identity. Never reused, so a stale handle can always be
# told apart from its replacement.
_serials = itertools.count(1)


class PtyStatus(enum.Enum):
    """Lifecycle states for a pty process."""

    STARTING = "starting"
    RUNNING = "running"
    KILLING = "killing"  # Termination requested, waiting for the child to die
    EXITED = "exited"


@dataclass(frozen=True)
class ExitInfo:
    """How a process ended.

    ``exit_code`` is ``None`` when no usable code exists (pipe error, or
    the child could not be reaped). A signal-terminated child reports
    ``128 + signal`` and the signal number.
    """

    exit_code: int | None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int | None) -> ExitInfo:
        if returncode is None:
            return cls(exit_code=None)
        if returncode < 0:
            return cls(exit_code=128 - returncode, signal=-returncode)
        return cls(exit_code=returncode)

    def to_payload(self) -> dict[str, Any]:
        return {"exitCode": self.exit_code, "signal": self.signal}


DataCallback = Callable[[str], None]
ExitCallback = Callable[[ExitInfo], None]


def _child_setup() -> None:
    """Make the child a session leader with the pty as controlling terminal."""
    import fcntl
    import termios

    os.setsid()
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def _set_winsize(fd: int, rows: int, cols: int) -> None:
    import fcntl
    import termios

    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


class PtyProcess:
    """A child process attached to a pseudo-terminal.

    Callbacks registered with :meth:`on_data` and :meth:`on_exit` run on the
    event loop thread, in handler turns that never interleave.
    """

    def __init__(
        self, session_id: str, config: SpawnConfig, cols: int = 120, rows: int = 32
    ) -> None:
        self.serial: int = next(_serials)
        self.session_id = session_id
        self.config = config
        self.cols = cols
        self.rows = rows
        self._status = PtyStatus.STARTING
        self._proc: Any = None
        self._master_fd: int = -1
        self._pid: int = 0
        self._reader_task: asyncio.Task | None = None
        self._reader_thread: threading.Thread | None = None
        self._chunks: asyncio.Queue[bytes | BaseException | None] | None = None
        self._data_callbacks: list[DataCallback] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._exit_info: ExitInfo | None = None
        self._pipe_error: OSError | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def __repr__(self) -> str:
        return f"<PtyProcess {self.session_id}#{self.serial} pid={self._pid} {self._status.value}>"

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        """Register an exit callback.

        Registering after the process already exited schedules the callback
        with the recorded exit info, so late listeners are not lost.
        """
        self._exit_callbacks.append(callback)
        if self._exit_info is not None:
            info = self._exit_info
            asyncio.get_running_loop().call_soon(self._invoke_exit, callback, info)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Spawn the child and start the async reader. Needs a running loop."""
        loop = asyncio.get_running_loop()
        if IS_WINDOWS:
            self._spawn_windows()
        else:
            self._spawn_posix()
        self._status = PtyStatus.RUNNING
        self._chunks = asyncio.Queue()
        self._reader_thread = threading.Thread(
            target=self._reader,
            args=(loop, self._chunks),
            daemon=True,
            name=f"pty-reader-{self.session_id}#{self.serial}",
        )
        self._reader_thread.start()
        self._reader_task = loop.create_task(self._read_loop())
        logger.info(
            "PTY %s#%d started: pid=%d cmd=%s cwd=%s",
            self.session_id,
            self.serial,
            self._pid,
            self.config.command,
            self.config.cwd,
        )

    def _spawn_posix(self) -> None:
        master_fd, slave_fd = os.openpty()
        try:
            _set_winsize(slave_fd, self.rows, self.cols)
            self._proc = subprocess.Popen(
                self.config.argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=self.config.cwd,
                env={**os.environ, **self.config.env},
                preexec_fn=_child_setup,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(self.session_id, str(e)) from e
        finally:
            # Parent always closes the slave side
            os.close(slave_fd)
        self._master_fd = master_fd
        self._pid = self._proc.pid

    def _spawn_windows(self) -> None:
        from winpty import PtyProcess as WinPtyProcess  # type: ignore[import-untyped]

        try:
            self._proc = WinPtyProcess.spawn(
                list(self.config.argv),
                cwd=self.config.cwd,
                env={**os.environ, **self.config.env},
                dimensions=(self.rows, self.cols),
            )
        except Exception as e:
            raise SpawnError(self.session_id, str(e)) from e
        self._pid = self._proc.pid

    def _reader(
        self,
        loop: asyncio.AbstractEventLoop,
        chunks: asyncio.Queue[bytes | BaseException | None],
    ) -> None:
        """Reader thread body: forward every chunk, then one terminator."""
        while True:
            item: bytes | BaseException | None
            try:
                item = self._read_chunk() or None
            except Exception as e:
                item = e
            try:
                loop.call_soon_threadsafe(chunks.put_nowait, item)
            except RuntimeError:
                # Event loop closed underneath us
                logger.debug("Loop closed before %s#%d reader finished", self.session_id, self.serial)
                return
            if not isinstance(item, bytes):
                return

    async def _read_loop(self) -> None:
        """Consume reader output until EOF, then reap the child and report the exit."""
        assert self._chunks is not None
        try:
            while True:
                item = await self._chunks.get()
                if isinstance(item, BaseException):
                    # EIO is how Linux reports a closed slave side: normal EOF.
                    eof = isinstance(item, EOFError) or (
                        isinstance(item, OSError) and item.errno == errno.EIO
                    )
                    if not eof and self._status == PtyStatus.RUNNING:
                        if isinstance(item, OSError):
                            self._pipe_error = item
                        logger.warning(
                            "PTY %s#%d read error: %s", self.session_id, self.serial, item
                        )
                    break
                if item is None:
                    break
                self._emit_data(item)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("PTY %s#%d reader failed", self.session_id, self.serial)
        finally:
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._emit_data_text(tail)

        info = await self._collect_exit()
        self._finish(info)

    def _read_chunk(self) -> bytes:
        if IS_WINDOWS:
            data = self._proc.read(READ_CHUNK)
            return data.encode("utf-8", errors="replace") if isinstance(data, str) else data
        return os.read(self._master_fd, READ_CHUNK)

    async def _collect_exit(self, timeout: float = 10.0) -> ExitInfo:
        if self._pipe_error is not None:
            return ExitInfo(exit_code=None)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            returncode = self._poll()
            if returncode is not None:
                return ExitInfo.from_returncode(returncode)
            await asyncio.sleep(0.05)
        logger.warning("PTY %s#%d did not exit after EOF", self.session_id, self.serial)
        return ExitInfo(exit_code=None)

    def _poll(self) -> int | None:
        if self._proc is None:
            return None
        if IS_WINDOWS:
            if self._proc.isalive():
                return None
            return self._proc.exitstatus
        return self._proc.poll()

    def _finish(self, info: ExitInfo) -> None:
        if self._exit_info is not None:
            return
        self._exit_info = info
        self._status = PtyStatus.EXITED
        self._close_fd()
        logger.info(
            "PTY %s#%d exited (code=%s signal=%s)",
            self.session_id,
            self.serial,
            info.exit_code,
            info.signal,
        )
        for callback in list(self._exit_callbacks):
            self._invoke_exit(callback, info)

    def _invoke_exit(self, callback: ExitCallback, info: ExitInfo) -> None:
        try:
            callback(info)
        except Exception:
            logger.exception("Error in exit callback for %s#%d", self.session_id, self.serial)

    def _emit_data(self, chunk: bytes) -> None:
        text = self._decoder.decode(chunk)
        if text:
            self._emit_data_text(text)

    def _emit_data_text(self, text: str) -> None:
        for callback in list(self._data_callbacks):
            try:
                callback(text)
            except Exception:
                logger.exception("Error in data callback for %s#%d", self.session_id, self.serial)

    def _close_fd(self) -> None:
        if self._master_fd >= 0:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = -1

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, data: str) -> None:
        if self._status != PtyStatus.RUNNING:
            logger.debug("Dropping write to %r", self)
            return
        if IS_WINDOWS:
            self._proc.write(data)
            return
        payload = data.encode("utf-8")
        while payload:
            written = os.write(self._master_fd, payload)
            payload = payload[written:]

    def resize(self, cols: int, rows: int) -> None:
        if self._status != PtyStatus.RUNNING:
            return
        self.cols, self.rows = cols, rows
        if IS_WINDOWS:
            self._proc.setwinsize(rows, cols)
        else:
            _set_winsize(self._master_fd, rows, cols)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def terminate(self) -> None:
        """Ask the process tree to exit (SIGHUP to the process group)."""
        if self._status not in (PtyStatus.RUNNING, PtyStatus.KILLING):
            return
        self._status = PtyStatus.KILLING
        self._signal(signal.SIGHUP if not IS_WINDOWS else None, force=False)

    def force_kill(self) -> None:
        """Kill the process tree outright. No-op once the exit was observed."""
        if self._exit_info is not None:
            return
        self._status = PtyStatus.KILLING
        self._signal(signal.SIGKILL if not IS_WINDOWS else None, force=True)

    def _signal(self, sig: signal.Signals | None, force: bool) -> None:
        if IS_WINDOWS:
            try:
                self._proc.terminate(force=force)
            except Exception as e:
                logger.debug("Terminate failed for %s#%d: %s", self.session_id, self.serial, e)
            return
        try:
            # The child leads its own session, so pgid == pid.
            os.killpg(self._pid, sig)
            logger.info("Sent %s to %r", sig.name, self)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self._pid)
        except OSError as e:
            logger.warning("Error signalling PTY %s#%d: %s", self.session_id, self.serial, e)

    @property
    def alive(self) -> bool:
        return self._status in (PtyStatus.RUNNING, PtyStatus.KILLING)

    @property
    def status(self) -> PtyStatus:
        return self._status

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def exit_info(self) -> ExitInfo | None:
        return self._exit_info
