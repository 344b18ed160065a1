"""Tests for the WebSocket listener and the health endpoint."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from ptybridge.bridge.server import HEALTH_MESSAGE, create_app, main
from ptybridge.config.settings import Settings, TerminalConfig

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX pty required")


def receive_until(ws, needle: str, max_frames: int = 200) -> str:
    output = ""
    for _ in range(max_frames):
        output += ws.receive_text()
        if needle in output:
            return output
    raise AssertionError(f"{needle!r} not in output {output!r}")


def receive_until_closed(ws, max_frames: int = 200) -> tuple[str, int]:
    output = ""
    for _ in range(max_frames):
        try:
            output += ws.receive_text()
        except WebSocketDisconnect as e:
            return output, e.code
    raise AssertionError("connection was never closed")


class TestHealthEndpoint:
    @pytest.fixture
    def client(self, sh_settings: Settings) -> TestClient:
        return TestClient(create_app(sh_settings))

    @pytest.mark.parametrize("path", ["/", "/health", "/anything/else"])
    def test_health_returns_plain_text(self, client: TestClient, path: str) -> None:
        resp = client.get(path)
        assert resp.status_code == 200
        assert resp.text == HEALTH_MESSAGE
        assert resp.headers["content-type"].startswith("text/plain")

    def test_head(self, client: TestClient) -> None:
        resp = client.head("/")
        assert resp.status_code == 200

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    def test_any_plain_method(self, client: TestClient, method: str) -> None:
        resp = client.request(method, "/some/path")
        assert resp.status_code == 200
        assert resp.text == HEALTH_MESSAGE


class TestCreateApp:
    def test_shell_resolved_from_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("INIT_CWD", "/srv/project")
        settings = Settings(
            terminal=TerminalConfig(shells={"default": "zsh"}, shell_args=["-l"]),
        )
        app = create_app(settings)
        assert app.state.command == ["zsh", "-l"]
        assert app.state.cwd == "/srv/project"

    def test_cwd_falls_back_to_server_directory(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path
    ) -> None:
        monkeypatch.delenv("INIT_CWD", raising=False)
        monkeypatch.chdir(tmp_path)
        app = create_app(Settings())
        assert app.state.cwd == str(tmp_path)


@posix_only
class TestTerminalSocket:
    def test_stdin_echo(self, sh_settings: Settings) -> None:
        with TestClient(create_app(sh_settings)) as client:
            with client.websocket_connect("/") as ws:
                ws.send_text(json.dumps({"type": "stdin", "payload": "echo $((40+2))\n"}))
                assert "42" in receive_until(ws, "42")

    def test_resize_then_query(self, sh_settings: Settings) -> None:
        with TestClient(create_app(sh_settings)) as client:
            with client.websocket_connect("/") as ws:
                ws.send_text(json.dumps({"type": "resize", "cols": 120, "rows": 40}))
                ws.send_text(json.dumps({"type": "stdin", "payload": "stty size\n"}))
                receive_until(ws, "40 120")

    def test_garbage_then_valid_stdin(self, sh_settings: Settings) -> None:
        with TestClient(create_app(sh_settings)) as client:
            with client.websocket_connect("/") as ws:
                ws.send_text('{"garbage": true}')
                ws.send_text("definitely not json")
                ws.send_bytes(b"\x00\x01")
                ws.send_text(json.dumps({"type": "stdin", "payload": "echo $((6*7))\n"}))
                receive_until(ws, "42")

    def test_process_exit_closes_connection(self) -> None:
        settings = Settings(
            terminal=TerminalConfig(shells={"default": "sh"}, shell_args=["-c", "echo bye"]),
        )
        with TestClient(create_app(settings)) as client:
            with client.websocket_connect("/") as ws:
                output, code = receive_until_closed(ws)
        assert "bye" in output
        assert code == 1000

    def test_spawn_failure_closes_connection(self) -> None:
        settings = Settings(
            terminal=TerminalConfig(shells={"default": "/nonexistent/shell"}),
        )
        with TestClient(create_app(settings)) as client:
            with client.websocket_connect("/") as ws:
                output, code = receive_until_closed(ws)
        assert output == ""
        assert code == 1011

    def test_concurrent_connections_are_independent(self, sh_settings: Settings) -> None:
        app = create_app(sh_settings)
        with TestClient(app) as client:
            with client.websocket_connect("/") as first, client.websocket_connect("/") as second:
                first.send_text(json.dumps({"type": "stdin", "payload": "echo one-$((1+1))\n"}))
                second.send_text(json.dumps({"type": "stdin", "payload": "echo two-$((2+2))\n"}))
                assert "two" not in receive_until(first, "one-2")
                assert "one" not in receive_until(second, "two-4")
                assert len(app.state.sessions) == 2

    def test_session_unregistered_after_disconnect(self, sh_settings: Settings) -> None:
        app = create_app(sh_settings)
        with TestClient(app) as client:
            with client.websocket_connect("/") as ws:
                ws.send_text(json.dumps({"type": "stdin", "payload": "echo $((1+2))\n"}))
                receive_until(ws, "3")
                assert len(app.state.sessions) == 1
        assert app.state.sessions == {}


class TestMain:
    def test_uses_config_file_and_environment(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        config_dir = tmp_path / "config"
        config_dir.mkdir()
        (config_dir / "ptybridge.yaml").write_text(
            "server:\n  host: 127.0.0.1\n  port: 4300\nlogging:\n  level: DEBUG\n"
        )
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("PTYBRIDGE_SERVER__PORT", "4400")
        with patch("uvicorn.run") as run:
            main()
        _, kwargs = run.call_args
        assert (kwargs["host"], kwargs["port"]) == ("127.0.0.1", 4400)
        assert logging.getLogger("ptybridge").level == logging.DEBUG
