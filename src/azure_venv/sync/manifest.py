"""Sync manifest for incremental sync tracking.

This module provides:
- ManifestEntry: Last synced state of one blob
- SyncManifest: All entries plus schema version and last sync time
- ManifestManager: Atomic load/save of the manifest file

The manifest lives at a fixed location under the sync root
(``<root>/.azure-venv-manifest.json``). A missing or unreadable manifest
is replaced by an empty one, which degrades the next pass to a full
re-download instead of failing.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from azure_venv.core.errors import SyncError
from azure_venv.sync.types import BlobInfo

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = ".azure-venv-manifest.json"
MANIFEST_VERSION = 1

_ENTRY_FIELDS = {
    "blobName": str,
    "etag": str,
    "lastModified": str,
    "contentLength": int,
    "localPath": str,
    "syncedAt": str,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def manifest_path_for(root_dir: Path | str) -> Path:
    """Get the manifest path for a sync root."""
    return Path(root_dir) / MANIFEST_FILENAME


class ManifestSchemaError(ValueError):
    """Manifest content does not match the expected schema."""


@dataclass
class ManifestEntry:
    """Last synced state of one blob.

    Attributes:
        blob_name: Full blob name (the manifest key).
        etag: Etag observed when the blob was downloaded.
        last_modified: ISO 8601 last modified time.
        content_length: Size in bytes.
        local_path: Path relative to the sync root, forward slashes.
        synced_at: ISO 8601 time the blob was written locally.
    """

    blob_name: str
    etag: str
    last_modified: str
    content_length: int
    local_path: str
    synced_at: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntry:
        """Create from a manifest JSON object.

        Raises:
            ManifestSchemaError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ManifestSchemaError("entry is not an object")
        for name, expected in _ENTRY_FIELDS.items():
            value = data.get(name)
            if not isinstance(value, expected) or isinstance(value, bool):
                raise ManifestSchemaError(f"entry field {name!r} missing or invalid")
        return cls(
            blob_name=data["blobName"],
            etag=data["etag"],
            last_modified=data["lastModified"],
            content_length=data["contentLength"],
            local_path=data["localPath"],
            synced_at=data["syncedAt"],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the manifest JSON representation."""
        return {
            "blobName": self.blob_name,
            "etag": self.etag,
            "lastModified": self.last_modified,
            "contentLength": self.content_length,
            "localPath": self.local_path,
            "syncedAt": self.synced_at,
        }


@dataclass
class SyncManifest:
    """Durable record of what has been materialized locally."""

    version: int = MANIFEST_VERSION
    last_sync_at: str = ""
    entries: dict[str, ManifestEntry] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> SyncManifest:
        """Create from parsed manifest JSON.

        Raises:
            ManifestSchemaError: If the document does not match the schema.
        """
        if not isinstance(data, dict):
            raise ManifestSchemaError("manifest is not an object")
        version = data.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise ManifestSchemaError("manifest version missing or invalid")
        if version != MANIFEST_VERSION:
            raise ManifestSchemaError(f"unsupported manifest version {version}")
        entries = data.get("entries")
        if not isinstance(entries, dict):
            raise ManifestSchemaError("manifest entries missing or invalid")
        last_sync_at = data.get("lastSyncAt", "")
        if not isinstance(last_sync_at, str):
            raise ManifestSchemaError("manifest lastSyncAt invalid")
        return cls(
            version=version,
            last_sync_at=last_sync_at,
            entries={key: ManifestEntry.from_dict(value) for key, value in entries.items()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the manifest JSON representation."""
        return {
            "version": self.version,
            "lastSyncAt": self.last_sync_at,
            "entries": {key: entry.to_dict() for key, entry in self.entries.items()},
        }


class ManifestManager:
    """Loads and atomically saves the sync manifest file."""

    def __init__(self, manifest_path: Path | str) -> None:
        """Initialize the manager.

        Args:
            manifest_path: Absolute path of the manifest file.
        """
        self._manifest_path = Path(manifest_path)

    @property
    def manifest_path(self) -> Path:
        """Get the manifest file path."""
        return self._manifest_path

    def load(self) -> SyncManifest:
        """Load the manifest from disk. Never raises.

        Returns:
            The stored manifest, or an empty one if the file is missing,
            unreadable, malformed, or does not match the schema.
        """
        try:
            content = self._manifest_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No manifest file found, starting with empty manifest")
            return SyncManifest()
        except OSError as e:
            logger.warning(
                'Failed to load manifest from "%s": %s. Returning empty manifest.',
                self._manifest_path,
                e,
            )
            return SyncManifest()

        try:
            manifest = SyncManifest.from_dict(json.loads(content))
        except (json.JSONDecodeError, ManifestSchemaError) as e:
            logger.warning(
                'Manifest file "%s" is invalid (%s), returning empty manifest',
                self._manifest_path,
                e,
            )
            return SyncManifest()

        logger.debug("Loaded manifest with %d entries", len(manifest.entries))
        return manifest

    def save(self, manifest: SyncManifest) -> None:
        """Save the manifest atomically (temp file, then rename).

        last_sync_at is always stamped with the current time; the caller's
        object is left unchanged.

        Raises:
            SyncError: If the manifest cannot be written.
        """
        updated = replace(manifest, last_sync_at=_now_iso())
        content = json.dumps(updated.to_dict(), indent=2)
        directory = self._manifest_path.parent
        tmp_path = directory / f".manifest-tmp-{secrets.token_hex(8)}"

        try:
            directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(content, encoding="utf-8")
            os.replace(tmp_path, self._manifest_path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise SyncError(
                f'Failed to save manifest to "{self._manifest_path}": {e}'
            ) from e

        logger.debug("Saved manifest with %d entries", len(updated.entries))

    @staticmethod
    def needs_update(blob_info: BlobInfo, manifest: SyncManifest) -> bool:
        """Check whether a blob must be downloaded.

        Returns:
            True if the blob has no entry or its etag differs from the
            stored one (exact string comparison).
        """
        entry = manifest.entries.get(blob_info.name)
        if entry is None:
            return True
        return entry.etag != blob_info.etag

    @staticmethod
    def create_entry(blob_info: BlobInfo, local_path: str) -> ManifestEntry:
        """Create a manifest entry for a successfully synced blob.

        Args:
            blob_info: Blob metadata from listing.
            local_path: Path relative to the sync root.
        """
        return ManifestEntry(
            blob_name=blob_info.name,
            etag=blob_info.etag,
            last_modified=_to_iso(blob_info.last_modified),
            content_length=blob_info.content_length,
            local_path=local_path,
            synced_at=_now_iso(),
        )
