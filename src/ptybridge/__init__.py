"""ptybridge -- interactive terminal sessions over WebSocket.

This package exposes a locally spawned shell, attached to a
pseudo-terminal, to a remote client over a WebSocket connection. The
client sends keystrokes and resize events; the server streams raw
terminal output back. One connection maps to exactly one shell process.
"""

__version__ = "0.1.0"
