"""Configuration management for ptybridge.

Loads settings from a YAML configuration file with environment variable
overrides (``PTYBRIDGE_SERVER__PORT=4000`` and so on).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/ptybridge.yaml")

# Shell binary per ``sys.platform``; "default" covers every other platform.
DEFAULT_SHELLS = {
    "win32": "powershell.exe",
    "default": "bash",
}


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3001, ge=1, le=65535)


class TerminalConfig(BaseModel):
    shells: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SHELLS))
    shell_args: list[str] = Field(default_factory=list)
    cols: int = Field(default=80, gt=0, le=65535)
    rows: int = Field(default=30, gt=0, le=65535)
    term: str = Field(default="xterm-256color")
    cwd_env_var: str = Field(
        default="INIT_CWD",
        description="Environment variable holding the originating working directory",
    )
    kill_timeout: float = Field(default=5.0, gt=0)
    max_pending_chunks: int = Field(default=256, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the ptybridge server.

    Loads from YAML file and supports environment variable overrides.
    """

    model_config = {
        "env_prefix": "PTYBRIDGE_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML data arrives as init kwargs; environment variables beat it.
        return env_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + environment variables.

    Priority: env vars > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)


def resolve_shell(shells: dict[str, str], platform: str | None = None) -> str:
    """Pick the shell binary for ``platform`` (defaults to ``sys.platform``)."""
    platform = platform or sys.platform
    shell = shells.get(platform) or shells.get("default")
    if not shell:
        raise ValueError(f"No shell configured for platform {platform!r}")
    return shell


def resolve_working_directory(env_var: str) -> str:
    """Return the originating working directory, or our own as fallback."""
    return os.environ.get(env_var) or os.getcwd()
