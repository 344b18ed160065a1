"""Terminal session: one client connection bound to one shell process.

A session moves through ``STARTING -> ACTIVE -> CLOSING -> CLOSED``.
While active it runs two pumps concurrently:

- the input pump decodes client frames and applies them to the shell
  (``stdin`` writes, ``resize`` changes the terminal size);
- the output pump forwards every chunk the shell prints to the client,
  in order, as a raw text frame.

Whichever side finishes first (client gone, shell exited, fatal error,
``stop()``) tears down the other. All session errors are handled here;
``run()`` does not raise them to the caller.
"""

from __future__ import annotations

import asyncio
import codecs
import enum
import logging
from typing import Awaitable, Callable, Mapping, Sequence

from ptybridge.bridge.connection import CLOSE_INTERNAL_ERROR, CLOSE_NORMAL, Connection
from ptybridge.bridge.errors import (
    BridgeError,
    ConnectionClosed,
    DecodeError,
    ResizeError,
    SpawnError,
)
from ptybridge.bridge.messages import ResizeMessage, StdinMessage, decode_message
from ptybridge.bridge.process import ExitStatus, Geometry, PtyProcess

logger = logging.getLogger(__name__)

ProcessFactory = Callable[..., Awaitable[PtyProcess]]


class SessionState(str, enum.Enum):
    STARTING = "starting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class TerminalSession:
    """Bridges one connection to one pty-backed shell for its lifetime."""

    def __init__(
        self,
        connection: Connection,
        command: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        geometry: Geometry | None = None,
        term: str = "xterm-256color",
        process_factory: ProcessFactory | None = None,
        kill_timeout: float = 5.0,
        max_pending_chunks: int = 256,
    ) -> None:
        self._connection = connection
        self._command = list(command)
        self._cwd = cwd
        self._env = env
        self._geometry = geometry or Geometry()
        self._term = term
        self._process_factory = process_factory or PtyProcess.spawn
        self._kill_timeout = kill_timeout
        self._max_pending_chunks = max_pending_chunks
        self._state = SessionState.STARTING
        self._process: PtyProcess | None = None
        self._stop_requested = asyncio.Event()
        self._fatal = False
        self._started = False

    @property
    def peer(self) -> str:
        return self._connection.peer

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def geometry(self) -> Geometry:
        return self._geometry

    @property
    def process(self) -> PtyProcess | None:
        return self._process

    def stop(self) -> None:
        """Ask the session to shut down; ``run()`` returns once it has."""
        self._stop_requested.set()

    async def run(self) -> ExitStatus | None:
        """Spawn the shell, pump data until either side ends, then clean up.

        Returns:
            The shell's exit status, or None if it never started.
        """
        if self._started:
            raise RuntimeError("A terminal session can only be run once")
        self._started = True

        try:
            self._process = await self._process_factory(
                self._command,
                geometry=self._geometry,
                cwd=self._cwd,
                env=self._env,
                term=self._term,
                max_pending_chunks=self._max_pending_chunks,
            )
        except SpawnError as e:
            logger.error("Session %s: cannot start shell: %s", self.peer, e)
            await self._connection.close(CLOSE_INTERNAL_ERROR)
            self._state = SessionState.CLOSED
            return None

        self._state = SessionState.ACTIVE
        logger.info("Session %s active (shell pid=%d)", self.peer, self._process.pid)

        input_pump = asyncio.create_task(self._pump_input())
        output_pump = asyncio.create_task(self._pump_output())
        stop_waiter = asyncio.create_task(self._stop_requested.wait())
        try:
            await asyncio.wait(
                {input_pump, output_pump, stop_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            self._state = SessionState.CLOSING
            status = await self._teardown(input_pump, output_pump, stop_waiter)

        logger.info("Session %s closed (shell pid=%d, %s)", self.peer, self._process.pid, status)
        return status

    async def _teardown(
        self,
        input_pump: asyncio.Task[None],
        output_pump: asyncio.Task[None],
        stop_waiter: asyncio.Task[bool],
    ) -> ExitStatus:
        assert self._process is not None
        input_pump.cancel()
        stop_waiter.cancel()
        self._process.kill()

        # The output stream ends once the killed shell has been reaped.
        _, pending = await asyncio.wait({output_pump}, timeout=self._kill_timeout)
        if pending:
            logger.warning("Session %s: output did not drain in %.1fs", self.peer, self._kill_timeout)
            output_pump.cancel()
        await asyncio.gather(input_pump, output_pump, stop_waiter, return_exceptions=True)

        for name, task in (("input", input_pump), ("output", output_pump)):
            if task.cancelled():
                continue
            error = task.exception()
            if error is None or isinstance(error, ConnectionClosed):
                continue
            self._fatal = True
            if isinstance(error, BridgeError):
                logger.error("Session %s: %s pump failed: %s", self.peer, name, error)
            else:
                logger.error(
                    "Session %s: %s pump crashed", self.peer, name, exc_info=error,
                )

        await self._connection.close(CLOSE_INTERNAL_ERROR if self._fatal else CLOSE_NORMAL)
        status = await self._process.wait()
        self._state = SessionState.CLOSED
        return status

    async def _pump_input(self) -> None:
        while True:
            try:
                raw = await self._connection.receive()
            except ConnectionClosed as e:
                logger.info("Session %s: %s", self.peer, e)
                return
            await self._dispatch(raw)

    async def _dispatch(self, raw: str | bytes) -> None:
        assert self._process is not None
        try:
            message = decode_message(raw)
        except DecodeError as e:
            logger.warning("Session %s: dropping message: %s", self.peer, e)
            return

        if isinstance(message, StdinMessage):
            await self._process.write(message.payload.encode("utf-8", errors="replace"))
        elif isinstance(message, ResizeMessage):
            geometry = Geometry(cols=message.cols, rows=message.rows)
            try:
                self._process.resize(geometry)
            except ResizeError as e:
                logger.warning("Session %s: %s", self.peer, e)
                return
            self._geometry = geometry

    async def _pump_output(self) -> None:
        assert self._process is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        async for chunk in self._process.chunks():
            logger.debug("Session %s: %d bytes of output", self.peer, len(chunk))
            text = decoder.decode(chunk)
            if text:
                await self._connection.send_text(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            await self._connection.send_text(tail)
