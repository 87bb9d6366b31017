"""Azure Blob Storage client for one container.

This module provides:
- BlobStoreClient: SAS-authenticated wrapper around azure.storage.blob.ContainerClient
- Flat listing, buffered and streaming downloads
- Translation of azure.core exceptions into the azure-venv error taxonomy

Retries of transient failures are left to the SDK's retry policy; no
connection is made until the first operation.
"""

from __future__ import annotations

import base64
import contextlib
import logging
import os
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.storage.blob import ContainerClient

from azure_venv.core.errors import (
    AuthenticationError,
    AzureConnectionError,
    AzureVenvError,
    BlobNotFoundError,
)
from azure_venv.core.log import sanitize
from azure_venv.sync.types import BlobDownloadResult, BlobInfo

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")


def _clean_etag(etag: str | None) -> str:
    return (etag or "").strip('"')


def _encode_md5(md5: bytes | bytearray | None) -> str | None:
    if not md5:
        return None
    return base64.b64encode(bytes(md5)).decode("ascii")


class BlobStoreClient:
    """Client for one Azure Blob Storage container."""

    def __init__(
        self,
        account_url: str,
        container_name: str,
        sas_token: str,
        timeout: float = 30.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        container_client: ContainerClient | None = None,
    ) -> None:
        """Initialize the blob client.

        Args:
            account_url: Account URL, e.g. "https://acct.blob.core.windows.net".
            container_name: Container name.
            sas_token: SAS token without leading '?'.
            timeout: Connection and read timeout in seconds.
            max_retries: Retries for transient failures (SDK retry policy).
            container_client: Pre-built ContainerClient (used by tests).
        """
        self._container_name = container_name
        self._sas_token = sas_token
        self._container = container_client or ContainerClient(
            account_url,
            container_name=container_name,
            credential=sas_token,
            retry_total=max_retries,
            connection_timeout=timeout,
            read_timeout=timeout,
        )
        logger.debug('BlobStoreClient initialized for container "%s"', container_name)

    def close(self) -> None:
        """Close the underlying SDK client."""
        self._container.close()

    def __enter__(self) -> BlobStoreClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # === Error handling ===

    def _sanitize(self, text: str) -> str:
        return sanitize(text, self._sas_token)

    def _translate(self, error: Exception, context: str, blob_name: str = "") -> AzureVenvError:
        """Map an SDK exception onto the azure-venv error taxonomy."""
        status = getattr(error, "status_code", None)
        message = self._sanitize(f"{context}: {error}")

        if isinstance(error, ResourceNotFoundError) and blob_name:
            return BlobNotFoundError(self._sanitize(f'Blob "{blob_name}" not found'), blob_name)
        if isinstance(error, ClientAuthenticationError) or (
            isinstance(error, HttpResponseError) and status in (401, 403)
        ):
            logger.error("Azure authentication failed: %s", message)
            return AuthenticationError(message)

        logger.error("Azure connection error: %s", message)
        return AzureConnectionError(message, status)

    # === Listing ===

    def list_blobs(self, prefix: str) -> list[BlobInfo]:
        """List all blobs under a prefix (flat listing, all pages).

        Args:
            prefix: Virtual directory prefix, or "" for the container root.

        Returns:
            List of blob metadata.

        Raises:
            AuthenticationError: If the SAS token is rejected.
            AzureConnectionError: On network errors or unexpected responses.
        """
        logger.debug('Listing blobs with prefix: "%s"', prefix)
        try:
            # The pager fetches further pages lazily, so errors surface while iterating
            blobs = [
                self._blob_info(props)
                for props in self._container.list_blobs(name_starts_with=prefix or None)
            ]
        except AzureError as e:
            raise self._translate(e, f'Failed to list blobs with prefix "{prefix}"') from e

        logger.debug('Listed %d blob(s) under prefix "%s"', len(blobs), prefix)
        return blobs

    @staticmethod
    def _blob_info(props: Any) -> BlobInfo:
        settings = getattr(props, "content_settings", None)
        return BlobInfo(
            name=props.name,
            etag=_clean_etag(props.etag),
            last_modified=props.last_modified or _EPOCH,
            content_length=props.size or 0,
            content_md5=_encode_md5(getattr(settings, "content_md5", None)),
        )

    # === Downloads ===

    def download_to_bytes(self, blob_name: str) -> bytes:
        """Download a blob's content into memory.

        Raises:
            BlobNotFoundError: If the blob does not exist.
            AuthenticationError: If the SAS token is rejected.
            AzureConnectionError: On network errors.
        """
        logger.debug('Downloading blob "%s" to buffer', blob_name)
        try:
            content: bytes = self._container.download_blob(blob_name).readall()
        except AzureError as e:
            raise self._translate(
                e, f'Failed to download blob "{blob_name}" to buffer', blob_name
            ) from e
        logger.debug('Downloaded blob "%s" to buffer (%d bytes)', blob_name, len(content))
        return content

    def download_to_file(self, blob_name: str, local_path: Path) -> BlobDownloadResult:
        """Download a blob into memory, then write it to a local file.

        The file is written to a temporary sibling and renamed into place.
        """
        logger.debug('Downloading blob "%s" to "%s"', blob_name, local_path)
        try:
            downloader = self._container.download_blob(blob_name)
            content: bytes = downloader.readall()
        except AzureError as e:
            raise self._translate(e, f'Failed to download blob "{blob_name}"', blob_name) from e

        tmp_path = _temp_sibling(local_path)
        try:
            tmp_path.write_bytes(content)
            os.replace(tmp_path, local_path)
        except OSError:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
            raise

        return self._result(blob_name, local_path, downloader.properties, len(content))

    def download_to_file_streaming(self, blob_name: str, local_path: Path) -> BlobDownloadResult:
        """Stream a blob to a local file without buffering it in memory.

        Partial files are removed if the transfer fails.
        """
        logger.debug('Streaming download blob "%s" to "%s"', blob_name, local_path)
        tmp_path = _temp_sibling(local_path)
        try:
            downloader = self._container.download_blob(blob_name)
            with open(tmp_path, "wb") as f:
                written = downloader.readinto(f)
            os.replace(tmp_path, local_path)
        except (AzureError, OSError) as e:
            if tmp_path.exists():
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
                logger.debug('Cleaned up partial file "%s" after streaming failure', tmp_path)
            if isinstance(e, AzureError):
                raise self._translate(
                    e, f'Failed to stream download blob "{blob_name}"', blob_name
                ) from e
            raise

        result = self._result(blob_name, local_path, downloader.properties, written)
        logger.debug(
            'Streaming downloaded blob "%s" (%d bytes)', blob_name, result.content_length
        )
        return result

    @staticmethod
    def _result(blob_name: str, local_path: Path, props: Any, size: int) -> BlobDownloadResult:
        return BlobDownloadResult(
            blob_name=blob_name,
            local_path=local_path,
            etag=_clean_etag(getattr(props, "etag", None)),
            last_modified=getattr(props, "last_modified", None) or _EPOCH,
            content_length=size,
        )
