"""FastAPI server exposing shell sessions over WebSocket.

Every WebSocket connection, on any path, gets its own pty-backed shell.
Client frames are JSON control messages (``stdin``, ``resize``); the
server answers with raw terminal output. Plain HTTP requests of any method
get a short liveness message so tooling can tell "server down" apart
from "terminal broken".
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse

from ptybridge import __version__
from ptybridge.bridge.connection import WebSocketConnection
from ptybridge.bridge.process import Geometry
from ptybridge.bridge.session import ProcessFactory, TerminalSession
from ptybridge.config.settings import (
    Settings,
    load_settings,
    resolve_shell,
    resolve_working_directory,
)
from ptybridge.utils.logging import setup_logging

logger = logging.getLogger(__name__)

HEALTH_MESSAGE = "Terminal server is running"
HEALTH_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(
    settings: Settings | None = None,
    process_factory: ProcessFactory | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Server configuration. Defaults to ``Settings()``.
        process_factory: Replacement for ``PtyProcess.spawn`` (for testing).
    """
    settings = settings or Settings()
    terminal = settings.terminal

    # Resolved once; every session gets the same shell and directory.
    command = [resolve_shell(terminal.shells), *terminal.shell_args]
    cwd = resolve_working_directory(terminal.cwd_env_var)
    geometry = Geometry(cols=terminal.cols, rows=terminal.rows)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Terminal server ready (shell=%s, cwd=%s)", " ".join(command), cwd)
        yield
        sessions: dict[TerminalSession, asyncio.Task] = app.state.sessions
        if sessions:
            logger.info("Stopping %d active session(s)", len(sessions))
            for session in sessions:
                session.stop()
            await asyncio.gather(*sessions.values(), return_exceptions=True)
        logger.info("Terminal server stopped")

    app = FastAPI(
        title="ptybridge",
        description="Interactive shell sessions over WebSocket",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.sessions = {}
    app.state.command = command
    app.state.cwd = cwd

    @app.api_route(
        "/{path:path}", methods=HEALTH_METHODS, response_class=PlainTextResponse,
    )
    async def health_check(path: str) -> str:
        return HEALTH_MESSAGE

    @app.websocket("/{path:path}")
    async def terminal_socket(websocket: WebSocket, path: str) -> None:
        try:
            await websocket.accept()
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning("WebSocket upgrade from %s failed: %s", websocket.client, e)
            return

        connection = WebSocketConnection(websocket)
        logger.info("Client %s connected (path=/%s)", connection.peer, path)
        session = TerminalSession(
            connection,
            command,
            cwd=cwd,
            geometry=geometry,
            term=terminal.term,
            process_factory=process_factory,
            kill_timeout=terminal.kill_timeout,
            max_pending_chunks=terminal.max_pending_chunks,
        )
        task = asyncio.create_task(session.run())
        app.state.sessions[session] = task
        # Stays registered until teardown finishes, even if this handler is cancelled.
        task.add_done_callback(lambda _: app.state.sessions.pop(session, None))
        await task

    return app


def main() -> None:
    """Entry point for running the terminal server standalone."""
    settings = load_settings()
    setup_logging(settings.logging)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
