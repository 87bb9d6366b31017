"""Shared fixtures: an in-memory blob store and config builders."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from azure_venv.core.config import AzureVenvConfig, ParsedBlobUrl
from azure_venv.core.errors import AzureConnectionError, BlobNotFoundError
from azure_venv.sync.types import BlobDownloadResult, BlobInfo

SAS_TOKEN = "sv=2021-08-06&ss=b&se=2099-01-01T00%3A00%3A00Z&sig=supersecret"


class FakeBlobStore:
    """In-memory ObjectStoreClient."""

    def __init__(self) -> None:
        self.blobs: dict[str, tuple[bytes, str]] = {}
        self.failing: set[str] = set()
        self.list_error: Exception | None = None
        self.list_calls = 0
        self.downloads: list[tuple[str, str]] = []
        self._version = 0
        self._lock = threading.Lock()

    def put(self, name: str, content: bytes | str, etag: str | None = None) -> str:
        if isinstance(content, str):
            content = content.encode()
        if etag is None:
            self._version += 1
            etag = f"0x{self._version:04X}"
        self.blobs[name] = (content, etag)
        return etag

    def list_blobs(self, prefix: str) -> list[BlobInfo]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [
            BlobInfo(
                name=name,
                etag=etag,
                last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
                content_length=len(content),
            )
            for name, (content, etag) in sorted(self.blobs.items())
            if name.startswith(prefix)
        ]

    def _get(self, name: str, mode: str) -> tuple[bytes, str]:
        with self._lock:
            self.downloads.append((name, mode))
        if name in self.failing:
            raise AzureConnectionError(f'Failed to download blob "{name}"', 500)
        if name not in self.blobs:
            raise BlobNotFoundError(f'Blob "{name}" not found', name)
        return self.blobs[name]

    def download_to_bytes(self, blob_name: str) -> bytes:
        return self._get(blob_name, "bytes")[0]

    def _write(self, blob_name: str, local_path: Path, mode: str) -> BlobDownloadResult:
        content, etag = self._get(blob_name, mode)
        local_path.write_bytes(content)
        return BlobDownloadResult(
            blob_name=blob_name,
            local_path=local_path,
            etag=etag,
            last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
            content_length=len(content),
        )

    def download_to_file(self, blob_name: str, local_path: Path) -> BlobDownloadResult:
        return self._write(blob_name, local_path, "buffered")

    def download_to_file_streaming(self, blob_name: str, local_path: Path) -> BlobDownloadResult:
        return self._write(blob_name, local_path, "streaming")

    def modes_for(self, name: str) -> list[str]:
        return [mode for blob, mode in self.downloads if blob == name]


@pytest.fixture
def store() -> FakeBlobStore:
    """Create an empty in-memory blob store."""
    return FakeBlobStore()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AzureVenvConfig]:
    """Factory for configs rooted in tmp_path."""

    def factory(prefix: str = "", **overrides: Any) -> AzureVenvConfig:
        overrides.setdefault("root_dir", tmp_path)
        return AzureVenvConfig(
            blob_url=ParsedBlobUrl(
                account_url="https://acct.blob.core.windows.net",
                container_name="container",
                prefix=prefix,
            ),
            sas_token=SAS_TOKEN,
            **overrides,
        )

    return factory


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Undo configure_logging so caplog sees azure_venv records."""
    yield
    root = logging.getLogger("azure_venv")
    for handler in list(root.handlers):
        if getattr(handler, "_azure_venv", False):
            root.removeHandler(handler)
    root.propagate = True
    root.setLevel(logging.NOTSET)
