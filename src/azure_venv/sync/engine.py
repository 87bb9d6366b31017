"""Sync orchestration: list, diff against the manifest, download, record.

This module provides:
- SyncEngine.sync: Filesystem sync pass driven by the manifest
- SyncEngine.read_blobs: In-memory read of all blobs
- SyncEngine.fetch_remote_env: Download of the distinguished .env blob

The .env blob is never part of a file sync; callers fetch it separately
and feed it to the environment precedence merge.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from azure_venv.core.errors import PathTraversalError
from azure_venv.core.types import SyncMode
from azure_venv.sync.downloader import BlobDownloader, run_bounded
from azure_venv.sync.manifest import ManifestManager, manifest_path_for
from azure_venv.sync.path_validator import strip_prefix
from azure_venv.sync.types import (
    BlobContent,
    BlobInfo,
    MemoryReadResult,
    SyncPassResult,
    env_blob_name,
)

if TYPE_CHECKING:
    from azure_venv.core.config import AzureVenvConfig
    from azure_venv.sync.types import ObjectStoreClient

logger = logging.getLogger(__name__)


def relative_local_path(local_path: Path, root_dir: Path | str) -> str:
    """Express a local path relative to the sync root, with forward slashes."""
    root = os.path.normpath(os.path.abspath(root_dir))
    return Path(os.path.relpath(local_path, root)).as_posix()


def display_path(blob_name: str, prefix: str) -> str:
    """Get the prefix-relative path of a blob, or its full name if that fails."""
    try:
        return strip_prefix(blob_name, prefix)
    except PathTraversalError:
        return blob_name


class SyncEngine:
    """Orchestrates a sync pass against one container prefix."""

    def __init__(
        self,
        client: ObjectStoreClient,
        downloader: BlobDownloader | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            client: Blob store client for listing and downloading.
            downloader: Transfer orchestrator. Built per pass from the
                config when omitted.
        """
        self._client = client
        self._downloader = downloader

    def _list_file_blobs(self, prefix: str) -> list[BlobInfo]:
        env_name = env_blob_name(prefix)
        blobs = [b for b in self._client.list_blobs(prefix) if b.name != env_name]
        logger.info("Found %d blob(s) to sync (excluding .env)", len(blobs))
        return blobs

    def fetch_remote_env(self, prefix: str) -> bytes | None:
        """Download the remote .env blob if it exists.

        Returns:
            The blob content, or None if it is missing or the download failed.
        """
        name = env_blob_name(prefix)
        logger.info('Checking for remote .env at "%s"', name)
        try:
            content = self._client.download_to_bytes(name)
        except Exception as e:
            logger.debug("Remote .env not found or failed to download: %s", e)
            return None
        logger.info("Remote .env found (%d bytes)", len(content))
        return content

    def sync(self, config: AzureVenvConfig) -> SyncPassResult:
        """Run a filesystem sync pass.

        Lists blobs under the prefix, selects the ones to download (all in
        FULL mode, changed ones in INCREMENTAL mode), downloads them, and
        records each success in the manifest before saving it.

        Returns:
            Aggregate counts. skipped is 0 in FULL mode.

        Raises:
            AzureVenvError: If listing fails.
            SyncError: If the manifest cannot be saved.
        """
        prefix = config.prefix
        root_dir = config.root_dir
        logger.info('Starting %s sync with prefix "%s"', config.sync_mode.value, prefix)

        blobs = self._list_file_blobs(prefix)
        total = len(blobs)
        if total == 0:
            return SyncPassResult()

        manifest_manager = ManifestManager(manifest_path_for(root_dir))
        manifest = manifest_manager.load()

        if config.sync_mode is SyncMode.INCREMENTAL:
            selected = [b for b in blobs if manifest_manager.needs_update(b, manifest)]
            logger.info(
                "Incremental sync: %d of %d blob(s) changed", len(selected), total
            )
        else:
            selected = blobs

        downloader = self._downloader or BlobDownloader(
            self._client, config.concurrency, config.max_blob_size
        )
        results = downloader.download_batch(selected, root_dir, prefix)

        by_name = {b.name: b for b in selected}
        succeeded = set()
        for result in results:
            blob = by_name.get(result.blob_name)
            if blob is None:
                continue
            manifest.entries[blob.name] = manifest_manager.create_entry(
                blob, relative_local_path(result.local_path, root_dir)
            )
            succeeded.add(blob.name)

        manifest_manager.save(manifest)

        failed_blobs = [b.name for b in selected if b.name not in succeeded]
        skipped = total - len(selected) if config.sync_mode is SyncMode.INCREMENTAL else 0

        logger.info(
            "Sync complete: %d downloaded, %d skipped, %d failed out of %d total",
            len(succeeded),
            skipped,
            len(failed_blobs),
            total,
        )
        return SyncPassResult(
            downloaded=len(succeeded),
            skipped=skipped,
            failed=len(failed_blobs),
            failed_blobs=failed_blobs,
            total_blobs=total,
            results=results,
        )

    def read_blob(self, blob: BlobInfo, prefix: str) -> BlobContent | None:
        """Download one blob into memory. Logs and returns None on failure."""
        try:
            content = self._client.download_to_bytes(blob.name)
        except Exception as e:
            logger.error('Failed to read blob "%s": %s', blob.name, e)
            return None
        return BlobContent(
            blob_name=blob.name,
            relative_path=display_path(blob.name, prefix),
            content=content,
            size=len(content),
            etag=blob.etag,
            last_modified=blob.last_modified.isoformat(),
        )

    def read_blobs(self, config: AzureVenvConfig) -> MemoryReadResult:
        """Read all blobs (except .env) into memory with bounded concurrency.

        Returns:
            Blob contents sorted by relative path, plus failure counts.

        Raises:
            AzureVenvError: If listing fails.
        """
        prefix = config.prefix
        logger.info('Starting in-memory blob read with prefix "%s"', prefix)

        blobs = self._list_file_blobs(prefix)
        total = len(blobs)
        if total == 0:
            return MemoryReadResult()

        contents = run_bounded(
            blobs,
            lambda blob: self.read_blob(blob, prefix),
            config.concurrency,
            name="BlobReader",
        )
        contents.sort(key=lambda c: c.relative_path)

        read_names = {c.blob_name for c in contents}
        failed_blobs = [b.name for b in blobs if b.name not in read_names]

        logger.info(
            "Read complete: %d read, %d failed out of %d total",
            len(contents),
            len(failed_blobs),
            total,
        )
        return MemoryReadResult(
            blobs=contents,
            failed=len(failed_blobs),
            failed_blobs=failed_blobs,
            total_blobs=total,
        )
