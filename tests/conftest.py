"""Shared test fixtures for the ptybridge test suite.

Provides an in-memory client connection for driving sessions without a
real WebSocket, and settings that use ``sh`` so tests do not depend on
the user's interactive shell configuration.
"""

from __future__ import annotations

import asyncio

import pytest

from ptybridge.bridge.connection import CLOSE_NORMAL
from ptybridge.bridge.errors import ConnectionClosed
from ptybridge.config.settings import Settings, TerminalConfig


class FakeConnection:
    """In-memory ``Connection``: feed frames in, inspect what was sent.

    Putting ``None`` on ``inbound`` simulates the client disconnecting.
    Setting ``receive_error`` or ``send_error`` makes the next call fail
    with that exception instead.
    """

    def __init__(self, peer: str = "test-client:1") -> None:
        self.peer = peer
        self.inbound: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.close_code: int | None = None
        self._disconnected = False
        self.receive_error: Exception | None = None
        self.send_error: Exception | None = None

    async def receive(self) -> str | bytes:
        if self.receive_error is not None:
            raise self.receive_error
        if self._disconnected:
            raise ConnectionClosed("client disconnected")
        item = await self.inbound.get()
        if item is None:
            self._disconnected = True
            raise ConnectionClosed("client disconnected")
        return item

    async def send_text(self, data: str) -> None:
        if self.send_error is not None:
            raise self.send_error
        if self._disconnected or self.close_code is not None:
            raise ConnectionClosed("connection is closed")
        self.sent.append(data)

    async def close(self, code: int = CLOSE_NORMAL) -> None:
        if self.close_code is None:
            self.close_code = code

    def feed(self, raw: str | bytes | None) -> None:
        self.inbound.put_nowait(raw)

    @property
    def output(self) -> str:
        return "".join(self.sent)

    async def wait_for_output(self, needle: str, timeout: float = 10.0) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while needle not in self.output:
            if loop.time() > deadline:
                raise AssertionError(f"{needle!r} not in output {self.output!r}")
            await asyncio.sleep(0.02)
        return self.output


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def connection_factory() -> type[FakeConnection]:
    """The FakeConnection class, for tests that need several clients."""
    return FakeConnection


@pytest.fixture
def sh_settings() -> Settings:
    """Settings that run plain ``sh`` in the test's working directory."""
    return Settings(terminal=TerminalConfig(shells={"default": "sh"}, kill_timeout=5.0))
