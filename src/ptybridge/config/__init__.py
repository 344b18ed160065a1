"""Configuration management for ptybridge.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides using the ``PTYBRIDGE_`` prefix.
"""

from ptybridge.config.settings import Settings, load_settings, resolve_shell

__all__ = ["Settings", "load_settings", "resolve_shell"]
