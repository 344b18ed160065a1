"""Exceptions raised inside a terminal session.

Fatal errors (spawn, stdin write, transport) end the owning session;
the others are logged and the session keeps running. None of them
propagate past ``TerminalSession.run``.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for ptybridge errors."""


class SpawnError(BridgeError):
    """The shell could not be started (missing binary, no pty, bad cwd)."""


class AdapterWriteError(BridgeError):
    """Writing to the shell's input failed or the shell has exited."""


class ResizeError(BridgeError):
    """The pseudo-terminal could not be resized."""


class DecodeError(BridgeError):
    """A client message could not be parsed."""


class TransportError(BridgeError):
    """The client connection failed while sending or receiving."""


class ConnectionClosed(BridgeError):
    """The client closed the connection."""
