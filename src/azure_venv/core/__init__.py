"""Core module - Shared configuration, errors, logging and enums."""

from azure_venv.core.config import (
    AzureVenvConfig,
    AzureVenvOptions,
    ParsedBlobUrl,
    parse_blob_url,
    validate_config,
)
from azure_venv.core.errors import (
    AuthenticationError,
    AzureConnectionError,
    AzureVenvError,
    BlobNotFoundError,
    ConfigurationError,
    ErrorKind,
    PathTraversalError,
    SyncError,
)
from azure_venv.core.log import configure_logging, sanitize
from azure_venv.core.types import EnvSource, LogLevel, SyncMode, SyncTarget

__all__ = [
    # Config
    "AzureVenvConfig",
    "AzureVenvOptions",
    "ParsedBlobUrl",
    "parse_blob_url",
    "validate_config",
    # Errors
    "AuthenticationError",
    "AzureConnectionError",
    "AzureVenvError",
    "BlobNotFoundError",
    "ConfigurationError",
    "ErrorKind",
    "PathTraversalError",
    "SyncError",
    # Logging
    "configure_logging",
    "sanitize",
    # Types
    "EnvSource",
    "LogLevel",
    "SyncMode",
    "SyncTarget",
]
