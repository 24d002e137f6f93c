"""Configuration management for hostterm.

Loads settings from a YAML configuration file with environment variable
overrides (``HOSTTERM_`` prefix, ``__`` for nested sections). Supports
.env files.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/hostterm.yaml")

DEFAULT_NSENTER_PATH = "/usr/bin/nsenter"
DEFAULT_SHELL_PATHS = "/bin/bash,/bin/sh,/bin/zsh,/usr/bin/bash,/usr/bin/sh"


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    websocket_path: str = Field(default="/terminal")
    max_message_size: int = Field(default=8192, gt=0, description="Largest accepted inbound text frame")


class TerminalConfig(BaseModel):
    buffer_size: int = Field(default=4096, gt=0, description="Read chunk size and batch threshold in bytes")
    flush_interval_ms: int = Field(default=100, gt=0)
    init_timeout_ms: int = Field(default=500, ge=0)
    use_simple_mode: bool = Field(default=False, description="Never try to enter the host namespaces")
    nsenter_path: str = Field(default=DEFAULT_NSENTER_PATH)
    shell_paths: str = Field(
        default=DEFAULT_SHELL_PATHS,
        description="Comma-separated candidate shells, tried in order",
    )
    queue_capacity: int = Field(default=1000, gt=0)

    @field_validator("nsenter_path", mode="before")
    @classmethod
    def _default_nsenter(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            logger.warning("nsenter_path is empty, using %s", DEFAULT_NSENTER_PATH)
            return DEFAULT_NSENTER_PATH
        return value.strip() if isinstance(value, str) else value

    @field_validator("shell_paths", mode="before")
    @classmethod
    def _join_shell_paths(cls, value: object) -> object:
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        if value is None or (isinstance(value, str) and not value.strip(", ")):
            logger.warning("shell_paths is empty, using %s", DEFAULT_SHELL_PATHS)
            return DEFAULT_SHELL_PATHS
        return value

    @property
    def shell_path_list(self) -> list[str]:
        return [p.strip() for p in self.shell_paths.split(",") if p.strip()]

    @property
    def flush_interval(self) -> float:
        return self.flush_interval_ms / 1000

    @property
    def init_timeout(self) -> float:
        return self.init_timeout_ms / 1000


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for hostterm.

    Values passed to the constructor (the YAML file, via ``load_settings``)
    sit below environment variables and the .env file.
    """

    model_config = {
        "env_prefix": "HOSTTERM_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
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
