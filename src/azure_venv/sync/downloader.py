"""Concurrency-bounded batch download of blobs to local files.

This module provides:
- BlobDownloader: Downloads a batch of blobs with at most N parallel transfers

Each batch runs its own short-lived pool of worker threads pulling from a
FIFO queue, so blobs start in the order they were submitted. Blobs larger
than the size threshold are streamed to disk; smaller ones are buffered.
Per-blob failures are logged and left out of the result list; the batch
itself never raises.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from azure_venv.core.errors import PathTraversalError
from azure_venv.sync.path_validator import resolve

if TYPE_CHECKING:
    from azure_venv.sync.types import BlobDownloadResult, BlobInfo, ObjectStoreClient

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(
    items: Sequence[T],
    func: Callable[[T], R | None],
    concurrency: int,
    cancel_check: Callable[[], bool] | None = None,
    name: str = "Worker",
) -> list[R]:
    """Run func over items with at most `concurrency` calls in flight.

    Items are taken from a FIFO queue, so they start in submission order.
    None results and exceptions (logged) are dropped from the output.
    Items not yet started when cancel_check returns True are skipped.

    Returns:
        Non-None results, in completion order.
    """
    results: list[R] = []
    if not items:
        return results

    tasks: queue.Queue[T | None] = queue.Queue()
    for item in items:
        tasks.put(item)

    worker_count = min(max(concurrency, 1), len(items))
    for _ in range(worker_count):
        tasks.put(None)

    results_lock = threading.Lock()

    def worker_loop() -> None:
        while True:
            item = tasks.get()
            if item is None:
                # Poison pill - no more work
                return
            if cancel_check is not None and cancel_check():
                logger.debug("Skipping %r: cancelled", item)
                continue
            try:
                result = func(item)
            except Exception:
                logger.exception("Unexpected error processing %r", item)
                continue
            if result is not None:
                with results_lock:
                    results.append(result)

    workers = [
        threading.Thread(target=worker_loop, name=f"{name}-{i}", daemon=True)
        for i in range(worker_count)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    return results


class BlobDownloader:
    """Downloads blobs to local files with bounded concurrency.

    Usage:
        downloader = BlobDownloader(client, concurrency=5, max_blob_size=100 * 2**20)
        results = downloader.download_batch(blobs, root_dir, prefix)
        failed = {b.name for b in blobs} - {r.blob_name for r in results}
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        concurrency: int = 5,
        max_blob_size: int = 100 * 1024 * 1024,
    ) -> None:
        """Initialize the downloader.

        Args:
            client: Blob store client.
            concurrency: Maximum parallel downloads.
            max_blob_size: Size in bytes above which downloads are streamed.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._client = client
        self._concurrency = concurrency
        self._max_blob_size = max_blob_size

    @property
    def concurrency(self) -> int:
        """Get the maximum number of parallel downloads."""
        return self._concurrency

    @property
    def max_blob_size(self) -> int:
        """Get the streaming threshold in bytes."""
        return self._max_blob_size

    def download_batch(
        self,
        blobs: Sequence[BlobInfo],
        root_dir: Path | str,
        prefix: str,
        cancel_check: Callable[[], bool] | None = None,
    ) -> list[BlobDownloadResult]:
        """Download a batch of blobs under root_dir.

        Args:
            blobs: Blobs to download.
            root_dir: Sync root directory.
            prefix: Blob prefix stripped to build local paths.
            cancel_check: Optional callable; blobs not yet started when it
                returns True are skipped.

        Returns:
            One result per successfully downloaded blob. A blob missing
            from the results failed (or was skipped) and has been logged.
        """
        results = run_bounded(
            blobs,
            lambda blob: self._download_one(blob, root_dir, prefix),
            self._concurrency,
            cancel_check=cancel_check,
            name="BlobDownloader",
        )
        logger.info("Batch download complete: %d/%d succeeded", len(results), len(blobs))
        return results

    def _download_one(
        self, blob: BlobInfo, root_dir: Path | str, prefix: str
    ) -> BlobDownloadResult | None:
        """Validate, prepare and transfer a single blob. Never raises."""
        try:
            local_path = resolve(blob.name, prefix, root_dir)
        except PathTraversalError as e:
            logger.warning('Skipping blob "%s": path validation failed - %s', blob.name, e)
            return None

        try:
            local_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error('Failed to create directory for blob "%s": %s', blob.name, e)
            return None

        try:
            if blob.content_length > self._max_blob_size:
                logger.info(
                    'Streaming download "%s" (%d bytes > %d threshold)',
                    blob.name,
                    blob.content_length,
                    self._max_blob_size,
                )
                result = self._client.download_to_file_streaming(blob.name, local_path)
            else:
                result = self._client.download_to_file(blob.name, local_path)
        except Exception as e:
            logger.error('Failed to download blob "%s": %s', blob.name, e)
            return None

        logger.info(
            'Downloaded "%s" (%d bytes) -> "%s"', blob.name, result.content_length, local_path
        )
        return result
