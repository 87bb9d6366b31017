"""Tests for the Azure Blob Storage client wrapper."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
)

from azure_venv.client.api import BlobStoreClient
from azure_venv.core.errors import (
    AuthenticationError,
    AzureConnectionError,
    BlobNotFoundError,
)

ACCOUNT = "https://acct.blob.core.windows.net"
SAS = "sv=2021-08-06&sig=secret"
MODIFIED = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def blob_props(name: str, etag: str = '"0x8DC1"', size: int = 12, md5: bytes | None = None) -> Any:
    props = MagicMock()
    props.name = name
    props.etag = etag
    props.size = size
    props.last_modified = MODIFIED
    props.content_settings.content_md5 = md5
    return props


def make_client(container: MagicMock) -> BlobStoreClient:
    return BlobStoreClient(ACCOUNT, "container", SAS, container_client=container)


def downloader(content: bytes, etag: str = '"0x1"') -> MagicMock:
    stream = MagicMock()
    stream.readall.return_value = content
    stream.properties = blob_props("ignored", etag=etag, size=len(content))

    def readinto(f: Any) -> int:
        f.write(content)
        return len(content)

    stream.readinto.side_effect = readinto
    return stream


def http_error(status: int) -> HttpResponseError:
    error = HttpResponseError(message=f"status {status} {SAS}")
    error.status_code = status
    return error


class TestConstruction:
    """Tests for building the SDK client."""

    def test_builds_container_client(self) -> None:
        """Should pass the SAS credential, retry policy and timeouts to the SDK."""
        with patch("azure_venv.client.api.ContainerClient") as container_cls:
            BlobStoreClient(ACCOUNT, "container", SAS, timeout=12.0, max_retries=5)

        args, kwargs = container_cls.call_args
        assert args == (ACCOUNT,)
        assert kwargs["container_name"] == "container"
        assert kwargs["credential"] == SAS
        assert kwargs["retry_total"] == 5
        assert kwargs["connection_timeout"] == 12.0
        assert kwargs["read_timeout"] == 12.0

    def test_context_manager_closes(self) -> None:
        """Should close the SDK client on exit."""
        container = MagicMock()
        with make_client(container):
            pass
        container.close.assert_called_once()


class TestListBlobs:
    """Tests for list_blobs."""

    def test_maps_properties(self) -> None:
        """Should strip etag quotes and copy size, date and MD5."""
        container = MagicMock()
        container.list_blobs.return_value = iter(
            [blob_props("cfg/a.txt", md5=b"\x01\x02"), blob_props("cfg/sub/b.json", etag="0x8DC2")]
        )

        blobs = make_client(container).list_blobs("cfg/")

        container.list_blobs.assert_called_once_with(name_starts_with="cfg/")
        assert [b.name for b in blobs] == ["cfg/a.txt", "cfg/sub/b.json"]
        assert blobs[0].etag == "0x8DC1"
        assert blobs[0].content_length == 12
        assert blobs[0].last_modified == MODIFIED
        assert blobs[0].content_md5 == "AQI="
        assert blobs[1].etag == "0x8DC2"
        assert blobs[1].content_md5 is None

    def test_empty_prefix_lists_container(self) -> None:
        """Should not send a name filter for the container root."""
        container = MagicMock()
        container.list_blobs.return_value = iter([])
        assert make_client(container).list_blobs("") == []
        container.list_blobs.assert_called_once_with(name_starts_with=None)

    def test_error_while_paging(self) -> None:
        """Should translate errors raised by later pages."""

        def pages() -> Iterator[Any]:
            yield blob_props("cfg/a.txt")
            raise ServiceRequestError(f"connection refused {SAS}")

        container = MagicMock()
        container.list_blobs.return_value = pages()

        with pytest.raises(AzureConnectionError) as exc_info:
            make_client(container).list_blobs("cfg/")
        assert "secret" not in exc_info.value.message

    @pytest.mark.parametrize("status", [401, 403])
    def test_forbidden_maps_to_auth_error(self, status: int) -> None:
        """Should raise AuthenticationError without leaking the SAS."""
        container = MagicMock()
        container.list_blobs.side_effect = http_error(status)
        with pytest.raises(AuthenticationError) as exc_info:
            make_client(container).list_blobs("")
        assert "secret" not in exc_info.value.message

    def test_client_auth_error(self) -> None:
        """Should map ClientAuthenticationError to AuthenticationError."""
        container = MagicMock()
        container.list_blobs.side_effect = ClientAuthenticationError("signature mismatch")
        with pytest.raises(AuthenticationError):
            make_client(container).list_blobs("")

    def test_server_error_maps_to_connection_error(self) -> None:
        """Should keep the status code of other HTTP failures."""
        container = MagicMock()
        container.list_blobs.side_effect = http_error(503)
        with pytest.raises(AzureConnectionError) as exc_info:
            make_client(container).list_blobs("")
        assert exc_info.value.status_code == 503

    def test_missing_container_is_connection_error(self) -> None:
        """Should not report a missing container as a missing blob."""
        container = MagicMock()
        container.list_blobs.side_effect = ResourceNotFoundError("ContainerNotFound")
        with pytest.raises(AzureConnectionError):
            make_client(container).list_blobs("")


class TestDownloads:
    """Tests for the download operations."""

    def test_download_to_bytes(self) -> None:
        """Should return the blob body."""
        container = MagicMock()
        container.download_blob.return_value = downloader(b"KEY=value\n")

        assert make_client(container).download_to_bytes("cfg/.env") == b"KEY=value\n"
        container.download_blob.assert_called_once_with("cfg/.env")

    def test_not_found(self) -> None:
        """Should raise BlobNotFoundError with the blob name."""
        container = MagicMock()
        container.download_blob.side_effect = ResourceNotFoundError("BlobNotFound")
        with pytest.raises(BlobNotFoundError) as exc_info:
            make_client(container).download_to_bytes("missing.txt")
        assert exc_info.value.blob_name == "missing.txt"

    def test_download_to_file(self, tmp_path: Path) -> None:
        """Should write the file and report blob metadata."""
        container = MagicMock()
        container.download_blob.return_value = downloader(b"hello")
        target = tmp_path / "a.txt"

        result = make_client(container).download_to_file("a.txt", target)

        assert target.read_bytes() == b"hello"
        assert result.etag == "0x1"
        assert result.content_length == 5
        assert result.last_modified == MODIFIED
        assert result.local_path == target
        assert list(tmp_path.iterdir()) == [target]

    def test_streaming_download(self, tmp_path: Path) -> None:
        """Should stream the body to disk with readinto."""
        body = b"x" * 10_000
        stream = downloader(body)
        container = MagicMock()
        container.download_blob.return_value = stream
        target = tmp_path / "big.bin"

        result = make_client(container).download_to_file_streaming("big.bin", target)

        assert target.read_bytes() == body
        assert result.content_length == 10_000
        stream.readall.assert_not_called()

    def test_streaming_failure_leaves_no_partial_file(self, tmp_path: Path) -> None:
        """Should remove partial files when the transfer fails."""
        stream = MagicMock()

        def readinto(f: Any) -> int:
            f.write(b"partial")
            raise ServiceRequestError("connection reset")

        stream.readinto.side_effect = readinto
        container = MagicMock()
        container.download_blob.return_value = stream

        with pytest.raises(AzureConnectionError):
            make_client(container).download_to_file_streaming("big.bin", tmp_path / "big.bin")
        assert list(tmp_path.iterdir()) == []
