"""Shell process attached to a pseudo-terminal.

``PtyProcess`` owns one child process whose stdin, stdout and stderr are
the slave side of a pty. The parent keeps the master side and exposes it
as an async byte stream (output), an awaitable writer (input) and a
resize call. The process runs in its own session with the pty as its
controlling terminal, so line editing, job control and Ctrl-C behave as
in a real terminal.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import signal
import struct
import subprocess
import sys
from dataclasses import dataclass
from typing import AsyncIterator, Mapping, Sequence

from ptybridge.bridge.errors import AdapterWriteError, ResizeError, SpawnError

if sys.platform != "win32":
    import fcntl
    import pty
    import termios

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096

# How long to wait for the pty to report end-of-file once the shell has
# been reaped. Background jobs may keep the slave open past this.
EXIT_DRAIN_TIMEOUT = 0.5


@dataclass(frozen=True)
class Geometry:
    """Terminal size in character cells."""

    cols: int = 80
    rows: int = 30

    def __post_init__(self) -> None:
        for name in ("cols", "rows"):
            value = getattr(self, name)
            if not 0 < value <= 0xFFFF:
                raise ValueError(f"{name} must be between 1 and 65535, got {value}")


@dataclass(frozen=True)
class ExitStatus:
    """How the shell ended: an exit code or a terminating signal."""

    code: int | None = None
    signal: int | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        if returncode < 0:
            return cls(signal=-returncode)
        return cls(code=returncode)

    def __str__(self) -> str:
        if self.signal is not None:
            return f"signal={self.signal}"
        return f"code={self.code}"


def _set_winsize(fd: int, geometry: Geometry) -> None:
    winsize = struct.pack("HHHH", geometry.rows, geometry.cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_terminal(slave_fd: int) -> None:
    # Runs in the child between fork and exec.
    os.setsid()
    fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)


class PtyProcess:
    """One pty-backed child process, exclusively owned by a session.

    Create instances with :meth:`spawn`. Output is consumed through
    :meth:`chunks`, which ends once the process has exited and its
    remaining output has been read.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        master_fd: int,
        geometry: Geometry,
        max_pending_chunks: int = 256,
    ) -> None:
        self._process = process
        self._master_fd = master_fd
        self._geometry = geometry
        self._max_pending_chunks = max_pending_chunks
        self._loop = asyncio.get_running_loop()
        self._chunks: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._reading = False
        self._eof = asyncio.Event()
        self._closed = False
        self._consumed = False
        self._killed = False
        self._write_waiter: asyncio.Future[None] | None = None
        self._exit_status: ExitStatus | None = None
        self._exited = asyncio.Event()

        self._resume_reading()
        self._exit_task = asyncio.create_task(self._watch_exit())

    @classmethod
    async def spawn(
        cls,
        command: Sequence[str],
        geometry: Geometry | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        term: str = "xterm-256color",
        max_pending_chunks: int = 256,
    ) -> PtyProcess:
        """Start ``command`` on a fresh pseudo-terminal.

        Args:
            command: Program and arguments, e.g. ``["bash"]``.
            geometry: Initial terminal size.
            cwd: Working directory for the child.
            env: Child environment. Defaults to the server's own.
            term: Value for ``TERM`` in the child environment.
            max_pending_chunks: Unread output chunks after which reading
                from the pty pauses until the consumer catches up.

        Raises:
            SpawnError: If the pty cannot be allocated or the program
                cannot be started.
        """
        if sys.platform == "win32":
            raise SpawnError("Pseudo-terminals are not supported on Windows hosts")
        if not command:
            raise SpawnError("Empty shell command")
        geometry = geometry or Geometry()

        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Cannot allocate pseudo-terminal: {e}") from e

        child_env = dict(os.environ if env is None else env)
        child_env["TERM"] = term

        try:
            _set_winsize(slave_fd, geometry)
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=child_env,
                preexec_fn=functools.partial(_acquire_controlling_terminal, slave_fd),
            )
        except (OSError, subprocess.SubprocessError) as e:
            os.close(master_fd)
            raise SpawnError(f"Cannot start {command[0]!r}: {e}") from e
        finally:
            # Parent always closes slave fd
            os.close(slave_fd)

        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        logger.info(
            "Started shell %s (pid=%d, %dx%d, cwd=%s)",
            command[0], process.pid, geometry.cols, geometry.rows, cwd or os.getcwd(),
        )
        return cls(process, master_fd, geometry, max_pending_chunks)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def alive(self) -> bool:
        return self._exit_status is None

    @property
    def geometry(self) -> Geometry:
        return self._geometry

    @property
    def exit_status(self) -> ExitStatus | None:
        return self._exit_status

    def chunks(self) -> AsyncIterator[bytes]:
        """Return the output stream. It can only be consumed once."""
        if self._consumed:
            raise RuntimeError(f"Output of shell pid={self.pid} is already consumed")
        self._consumed = True
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                return
            if self._chunks.qsize() <= self._max_pending_chunks // 2:
                self._resume_reading()
            yield chunk

    async def write(self, data: bytes) -> None:
        """Write all of ``data`` to the shell's input.

        Waits for the pty to drain when its buffer is full rather than
        dropping anything.

        Raises:
            AdapterWriteError: If the shell has exited or the write fails.
        """
        view = memoryview(data)
        while view:
            if self._closed or not self.alive:
                raise AdapterWriteError(f"Shell pid={self.pid} has exited")
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                await self._wait_writable()
                continue
            except OSError as e:
                raise AdapterWriteError(f"Failed to write to shell: {e}") from e
            view = view[written:]

    def resize(self, geometry: Geometry) -> None:
        """Resize the terminal. Does nothing once the shell has exited.

        Raises:
            ResizeError: If the kernel rejects the new size.
        """
        if self._closed or not self.alive:
            logger.debug("Ignoring resize of exited shell pid=%d", self.pid)
            return
        try:
            _set_winsize(self._master_fd, geometry)
        except OSError as e:
            raise ResizeError(f"Cannot resize terminal to {geometry}: {e}") from e
        self._geometry = geometry
        logger.debug("Resized shell pid=%d to %dx%d", self.pid, geometry.cols, geometry.rows)

    def kill(self) -> None:
        """SIGKILL the shell's process group and the terminal's foreground job."""
        if self._killed or not self.alive:
            return
        self._killed = True

        # setsid() in the child makes the shell a group leader.
        groups = {self.pid}
        if not self._closed:
            try:
                foreground = os.tcgetpgrp(self._master_fd)
            except OSError:
                foreground = 0
            if foreground > 0:
                groups.add(foreground)

        for pgid in groups:
            try:
                os.killpg(pgid, signal.SIGKILL)
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", pgid)
            except PermissionError as e:
                logger.warning("Cannot kill process group %d: %s", pgid, e)
        logger.info("Killed shell pid=%d", self.pid)

    async def wait(self) -> ExitStatus:
        """Wait until the shell has exited and its pty is released."""
        await self._exited.wait()
        assert self._exit_status is not None
        return self._exit_status

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError:
            # EIO once every slave descriptor is closed.
            data = b""
        if not data:
            self._eof.set()
            self._pause_reading()
            return
        self._chunks.put_nowait(data)
        if self._chunks.qsize() >= self._max_pending_chunks:
            self._pause_reading()

    def _resume_reading(self) -> None:
        if not self._reading and not self._closed and not self._eof.is_set():
            self._loop.add_reader(self._master_fd, self._on_readable)
            self._reading = True

    def _pause_reading(self) -> None:
        if self._reading:
            self._loop.remove_reader(self._master_fd)
            self._reading = False

    async def _wait_writable(self) -> None:
        waiter = self._loop.create_future()
        self._write_waiter = waiter

        def _ready() -> None:
            if not waiter.done():
                waiter.set_result(None)

        self._loop.add_writer(self._master_fd, _ready)
        try:
            await waiter
        finally:
            self._write_waiter = None
            if not self._closed:
                self._loop.remove_writer(self._master_fd)

    async def _watch_exit(self) -> None:
        returncode = await self._process.wait()
        self._exit_status = ExitStatus.from_returncode(returncode)
        logger.info("Shell pid=%d exited (%s)", self.pid, self._exit_status)

        # Pick up output still in flight; the reader may be paused.
        self._max_pending_chunks = sys.maxsize
        self._resume_reading()
        try:
            await asyncio.wait_for(self._eof.wait(), timeout=EXIT_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug("Terminal of pid=%d still held open, closing it", self.pid)

        self._close_master()
        self._chunks.put_nowait(None)
        self._exited.set()

    def _close_master(self) -> None:
        if self._closed:
            return
        self._pause_reading()
        self._loop.remove_writer(self._master_fd)
        self._closed = True
        if self._write_waiter is not None and not self._write_waiter.done():
            self._write_waiter.set_exception(
                AdapterWriteError(f"Shell pid={self.pid} has exited")
            )
        try:
            os.close(self._master_fd)
        except OSError:
            pass
