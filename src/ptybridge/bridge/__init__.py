"""Terminal bridge module for ptybridge.

Connects WebSocket clients to shells running on pseudo-terminals: the
process adapter (``process``), the per-connection session state machine
(``session``) and the FastAPI listener with its health endpoint
(``server``).
"""
