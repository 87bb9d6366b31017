"""Error taxonomy for azure-venv.

Every error raised by the library is an AzureVenvError carrying a closed
ErrorKind plus structured fields, so callers can dispatch with
``match error.kind`` instead of inspecting exception classes:

- CONFIGURATION: ConfigurationError (offending parameter)
- TRAVERSAL: PathTraversalError (offending blob name)
- SYNC: SyncError (manifest I/O or orchestration failure)
- CONNECTIVITY: AzureConnectionError (HTTP status code, if any)
- AUTH: AuthenticationError (SAS expiry, if known)
- NOT_FOUND: BlobNotFoundError (missing blob name)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure classes."""

    CONFIGURATION = "configuration"
    TRAVERSAL = "traversal"
    SYNC = "sync"
    CONNECTIVITY = "connectivity"
    AUTH = "auth"
    NOT_FOUND = "not_found"


class AzureVenvError(Exception):
    """Base exception for all azure-venv errors.

    Messages are expected to be sanitized (no SAS token) before being
    passed in.
    """

    kind: ErrorKind = ErrorKind.SYNC

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(AzureVenvError):
    """Required configuration is missing or invalid."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, parameter: str) -> None:
        super().__init__(message)
        self.parameter = parameter


class PathTraversalError(AzureVenvError):
    """A blob name would resolve to a path outside the sync root."""

    kind = ErrorKind.TRAVERSAL

    def __init__(self, message: str, blob_name: str) -> None:
        super().__init__(message)
        self.blob_name = blob_name


class SyncError(AzureVenvError):
    """A filesystem sync operation failed (fatal to the current pass)."""

    kind = ErrorKind.SYNC


class AzureConnectionError(AzureVenvError):
    """The blob service could not be reached or returned an error."""

    kind = ErrorKind.CONNECTIVITY

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(AzureVenvError):
    """SAS authentication failed or the token has expired."""

    kind = ErrorKind.AUTH

    def __init__(self, message: str, expiry_date: datetime | None = None) -> None:
        super().__init__(message)
        self.expiry_date = expiry_date


class BlobNotFoundError(AzureVenvError):
    """The requested blob does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, blob_name: str) -> None:
        super().__init__(message)
        self.blob_name = blob_name
