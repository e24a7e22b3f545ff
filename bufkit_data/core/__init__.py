"""Core configuration and exceptions."""

from bufkit_data.core.config import Settings, load_settings
from bufkit_data.core.exceptions import (
    BufkitDataError,
    ConfigurationError,
    NotFoundError,
    UnparsableFileError,
    DatabaseError,
    StoreError,
    ArchiveError,
)

__all__ = [
    "Settings",
    "load_settings",
    "BufkitDataError",
    "ConfigurationError",
    "NotFoundError",
    "UnparsableFileError",
    "DatabaseError",
    "StoreError",
    "ArchiveError",
]
