"""Sync module - Manifest-driven blob synchronization.

This module provides:
- SyncEngine: Sync pass orchestration (filesystem and memory targets)
- BlobDownloader: Concurrency-bounded batch downloads
- ManifestManager: Atomic manifest persistence
- resolve: Blob name to safe local path
"""

from azure_venv.sync.downloader import BlobDownloader, run_bounded
from azure_venv.sync.engine import SyncEngine
from azure_venv.sync.manifest import (
    MANIFEST_FILENAME,
    ManifestEntry,
    ManifestManager,
    SyncManifest,
    manifest_path_for,
)
from azure_venv.sync.path_validator import resolve, strip_prefix, validate_and_resolve_path
from azure_venv.sync.types import (
    BlobContent,
    BlobDownloadResult,
    BlobInfo,
    ChangeType,
    MemoryReadResult,
    ObjectStoreClient,
    SyncPassResult,
    WatchChangeEvent,
    env_blob_name,
)

__all__ = [
    # Orchestration
    "BlobDownloader",
    "SyncEngine",
    "run_bounded",
    # Manifest
    "MANIFEST_FILENAME",
    "ManifestEntry",
    "ManifestManager",
    "SyncManifest",
    "manifest_path_for",
    # Paths
    "resolve",
    "strip_prefix",
    "validate_and_resolve_path",
    # Types
    "BlobContent",
    "BlobDownloadResult",
    "BlobInfo",
    "ChangeType",
    "MemoryReadResult",
    "ObjectStoreClient",
    "SyncPassResult",
    "WatchChangeEvent",
    "env_blob_name",
]
