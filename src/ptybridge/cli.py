"""Command-line interface for ptybridge.

Provides the main entry point for running the terminal server and for
checking that a running server is reachable.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ptybridge",
        description="Interactive shell sessions over WebSocket",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/ptybridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the terminal server")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port")

    check_parser = subparsers.add_parser(
        "check", help="Check that a terminal server is reachable",
    )
    check_parser.add_argument(
        "--url", type=str, default=None,
        help="Health URL (default: http://localhost:<configured port>/health)",
    )
    check_parser.add_argument(
        "--timeout", type=float, default=5.0,
        help="Request timeout in seconds",
    )

    return parser.parse_args(argv)


def check_health(url: str, timeout: float = 5.0) -> bool:
    """Return True if the server at ``url`` answers its health check."""
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        print(f"{url}: unreachable ({e})")
        return False
    if response.status_code != 200:
        print(f"{url}: HTTP {response.status_code}")
        return False
    print(f"{url}: {response.text.strip()}")
    return True


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the ptybridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from ptybridge.config.settings import load_settings
    from ptybridge.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        import uvicorn
        from ptybridge.bridge.server import create_app

        host = args.host or settings.server.host
        port = args.port or settings.server.port
        logger.info("Starting terminal server on %s:%d", host, port)
        app = create_app(settings)
        uvicorn.run(app, host=host, port=port)

    elif args.command == "check":
        url = args.url or f"http://localhost:{settings.server.port}/health"
        if not check_health(url, timeout=args.timeout):
            sys.exit(1)


if __name__ == "__main__":
    main()
