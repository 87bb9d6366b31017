"""Shared enums for azure-venv."""

from __future__ import annotations

import logging
from enum import Enum


class SyncMode(str, Enum):
    """Whether a sync pass trusts the manifest.

    FULL always re-downloads every blob; INCREMENTAL only downloads blobs
    whose etag differs from the manifest.
    """

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncTarget(str, Enum):
    """Where synced blobs are materialized."""

    FILESYSTEM = "filesystem"
    MEMORY = "memory"


class EnvSource(str, Enum):
    """Tier an environment variable was taken from."""

    OS = "os"
    REMOTE = "remote"
    LOCAL = "local"


class LogLevel(str, Enum):
    """Logging verbosity accepted in configuration."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def logging_level(self) -> int:
        """Get the matching stdlib logging level."""
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARN: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]
