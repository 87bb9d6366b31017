"""Shared types and dataclasses for sync operations.

This module provides:
- BlobInfo: Metadata of one listed blob
- BlobDownloadResult: Result of a single blob download to disk
- BlobContent: A blob held in memory
- SyncPassResult, MemoryReadResult: Aggregate results of a sync pass
- ChangeType, WatchChangeEvent: Watch mode change detection
- ObjectStoreClient: Protocol the sync engine needs from a blob client
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class BlobInfo:
    """Metadata about a remote blob, as observed by one listing.

    Attributes:
        name: Full blob name including the prefix.
        etag: Opaque version tag; changes whenever content changes.
        last_modified: Last modification time reported by the service.
        content_length: Size in bytes.
        content_md5: Base64 content MD5 if the service reported one.
    """

    name: str
    etag: str
    last_modified: datetime
    content_length: int
    content_md5: str | None = None


@dataclass(frozen=True)
class BlobDownloadResult:
    """Result of a blob download to a local file."""

    blob_name: str
    local_path: Path
    etag: str
    last_modified: datetime
    content_length: int


@dataclass(frozen=True)
class BlobContent:
    """A blob's content held in memory.

    Attributes:
        blob_name: Full blob name.
        relative_path: Path relative to the prefix, forward slashes.
        content: Raw bytes.
        size: Content length in bytes.
        etag: Blob etag.
        last_modified: ISO 8601 last modified time.
    """

    blob_name: str
    relative_path: str
    content: bytes = field(repr=False)
    size: int
    etag: str
    last_modified: str


@dataclass
class SyncPassResult:
    """Result of a filesystem sync pass."""

    downloaded: int = 0
    skipped: int = 0
    failed: int = 0
    failed_blobs: list[str] = field(default_factory=list)
    total_blobs: int = 0
    results: list[BlobDownloadResult] = field(default_factory=list)


@dataclass
class MemoryReadResult:
    """Result of reading blobs into memory."""

    blobs: list[BlobContent] = field(default_factory=list)
    failed: int = 0
    failed_blobs: list[str] = field(default_factory=list)
    total_blobs: int = 0


class ChangeType(str, Enum):
    """Type of change detected during a watch poll."""

    ADDED = "added"
    MODIFIED = "modified"


@dataclass(frozen=True)
class WatchChangeEvent:
    """A change detected during a watch poll cycle."""

    type: ChangeType
    blob_name: str
    relative_path: str
    timestamp: datetime
    blob: BlobContent | None = None


class ObjectStoreClient(Protocol):
    """Operations the sync engine needs from a blob store client."""

    def list_blobs(self, prefix: str) -> list[BlobInfo]: ...

    def download_to_bytes(self, blob_name: str) -> bytes: ...

    def download_to_file(self, blob_name: str, local_path: Path) -> BlobDownloadResult: ...

    def download_to_file_streaming(
        self, blob_name: str, local_path: Path
    ) -> BlobDownloadResult: ...


def env_blob_name(prefix: str) -> str:
    """Get the name of the distinguished environment blob for a prefix."""
    return f"{prefix}.env" if prefix else ".env"
