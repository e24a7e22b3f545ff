"""
Configuration management for bufkit-data.

Uses Pydantic for validation and supports YAML configuration files
with environment variable expansion.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from bufkit_data.core.exceptions import ConfigurationError


def expand_env_vars(value: Any) -> Any:
    """Recursively expand environment variables in strings."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    elif isinstance(value, dict):
        return {k: expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [expand_env_vars(v) for v in value]
    return value


class ArchiveConfig(BaseModel):
    """Archive location and storage configuration."""

    root: Path = Field(default=Path("bufkit_archive"))
    compression_level: int = 6
    create: bool = True
    read_only: bool = False

    @field_validator("compression_level")
    @classmethod
    def check_level(cls, v: int) -> int:
        if not 0 <= v <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        return v

    @field_validator("root")
    @classmethod
    def expand_root(cls, v: Path) -> Path:
        return v.expanduser()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_dir: Path | None = None
    log_file: str = "bufkit_data.log"
    log_to_file: bool = False
    log_to_console: bool = True
    json_format: bool = False


class Settings(BaseSettings):
    """Main settings container."""

    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    class Config:
        env_prefix = "BUFKIT_"
        env_nested_delimiter = "__"


def _search_paths(config_path: Path | str | None) -> list[Path]:
    if config_path:
        return [Path(config_path)]
    return [
        Path("config/settings.local.yaml"),
        Path("config/settings.yaml"),
        Path.home() / ".bufkit_data" / "settings.yaml",
    ]


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML file.

    Args:
        config_path: Path to YAML configuration file.
                    If None, tries default locations.

    Returns:
        Settings instance.

    Raises:
        ConfigurationError: If an explicit path is missing or the file is invalid
    """
    if config_path and not Path(config_path).exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    config_data: dict[str, Any] = {}

    for path in _search_paths(config_path):
        if path.exists():
            with open(path) as f:
                try:
                    raw_data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
                if raw_data:
                    config_data = expand_env_vars(raw_data)
            break

    try:
        return Settings(**config_data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
