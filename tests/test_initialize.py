"""Tests for the library entry points and introspection helpers."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from azure_venv.core.config import AzureVenvOptions
from azure_venv.core.errors import AuthenticationError, AzureConnectionError, ConfigurationError
from azure_venv.core.types import EnvSource
from azure_venv.env.precedence import MemoryEnvSink
from azure_venv.initialize import NO_OP_SYNC_RESULT, init_azure_venv, watch_azure_venv
from azure_venv.introspection import SyncedFile, build_file_tree, sort_blobs
from azure_venv.sync.types import BlobContent

if TYPE_CHECKING:
    from conftest import FakeBlobStore

URL = "https://acct.blob.core.windows.net/container/app"
TOKEN = "sv=2021-08-06&sig=secret"


def configured_sink(**extra: str) -> MemoryEnvSink:
    return MemoryEnvSink({"AZURE_VENV": URL, "AZURE_VENV_SAS_TOKEN": TOKEN, **extra})


class TestInitAzureVenv:
    """Tests for init_azure_venv."""

    def test_not_configured(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should return the no-op result without touching the store."""
        result = init_azure_venv(
            AzureVenvOptions(root_dir=tmp_path), sink=MemoryEnvSink(), client=store
        )
        assert result is NO_OP_SYNC_RESULT
        assert result.attempted is False
        assert store.list_calls == 0

    def test_partial_config_raises(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should raise ConfigurationError when only the URL is set."""
        with pytest.raises(ConfigurationError):
            init_azure_venv(
                AzureVenvOptions(root_dir=tmp_path),
                sink=MemoryEnvSink({"AZURE_VENV": URL}),
                client=store,
            )

    def test_filesystem_sync(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should sync files, apply .env tiers and build the file tree."""
        store.put("app/config/settings.json", "{}")
        store.put("app/readme.txt", "hi")
        store.put("app/.env", "FROM_REMOTE=r\nSHARED=remote\n")
        (tmp_path / ".env").write_text("FROM_LOCAL=l\nSHARED=local\nPINNED=local\n")
        sink = configured_sink(PINNED="os")

        result = init_azure_venv(AzureVenvOptions(root_dir=tmp_path), sink=sink, client=store)

        assert result.attempted is True
        assert result.downloaded == 2
        assert result.total_blobs == 2
        assert result.remote_env_loaded is True
        assert (tmp_path / "config" / "settings.json").read_text() == "{}"
        assert sink.get("FROM_LOCAL") == "l"
        assert sink.get("SHARED") == "remote"
        assert sink.get("PINNED") == "os"
        assert result.env_sources["SHARED"] is EnvSource.REMOTE
        assert result.env_sources["PINNED"] is EnvSource.OS
        assert [n.name for n in result.file_tree] == ["config", "readme.txt"]
        assert result.blobs == []

    def test_config_from_local_env_file(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should pick up AZURE_VENV settings from the local .env."""
        store.put("app/a.txt", "a")
        (tmp_path / ".env").write_text(f"AZURE_VENV={URL}\nAZURE_VENV_SAS_TOKEN={TOKEN}\n")

        result = init_azure_venv(
            AzureVenvOptions(root_dir=tmp_path), sink=MemoryEnvSink(), client=store
        )

        assert result.downloaded == 1

    def test_memory_sync(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should return blob contents without writing files."""
        store.put("app/b.txt", "b")
        store.put("app/a.txt", "a")

        result = init_azure_venv(
            AzureVenvOptions(root_dir=tmp_path, sync_target="memory"),
            sink=configured_sink(),
            client=store,
        )

        assert [b.relative_path for b in result.blobs] == ["a.txt", "b.txt"]
        assert [n.name for n in result.file_tree] == ["a.txt", "b.txt"]
        assert not (tmp_path / "a.txt").exists()

    def test_connection_failure_degrades(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should return a failed result when fail_on_error is off."""
        store.list_error = AzureConnectionError("down", 503)

        result = init_azure_venv(
            AzureVenvOptions(root_dir=tmp_path), sink=configured_sink(), client=store
        )

        assert result.attempted is True
        assert result.downloaded == 0
        assert result.file_tree == []

    def test_connection_failure_raises_when_fail_on_error(
        self, tmp_path: Path, store: FakeBlobStore
    ) -> None:
        """Should re-raise when fail_on_error is set."""
        store.list_error = AzureConnectionError("down", 503)
        with pytest.raises(AzureConnectionError):
            init_azure_venv(
                AzureVenvOptions(root_dir=tmp_path, fail_on_error=True),
                sink=configured_sink(),
                client=store,
            )

    def test_auth_failure_always_raises(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should re-raise authentication errors even when degrading."""
        store.list_error = AuthenticationError("forbidden")
        with pytest.raises(AuthenticationError):
            init_azure_venv(
                AzureVenvOptions(root_dir=tmp_path), sink=configured_sink(), client=store
            )

    def test_unexpected_error_wrapped(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should wrap unknown errors in AzureConnectionError without leaking the SAS."""
        store.list_error = RuntimeError(f"weird failure {TOKEN}")
        with pytest.raises(AzureConnectionError) as exc_info:
            init_azure_venv(
                AzureVenvOptions(root_dir=tmp_path, fail_on_error=True),
                sink=configured_sink(),
                client=store,
            )
        assert "secret" not in exc_info.value.message


class TestWatchAzureVenv:
    """Tests for watch_azure_venv."""

    def test_not_configured(self, tmp_path: Path) -> None:
        """Should return a no-op watch result."""
        result = watch_azure_venv(AzureVenvOptions(root_dir=tmp_path), sink=MemoryEnvSink())
        assert result.initial_sync is NO_OP_SYNC_RESULT
        assert result.handle is None
        result.stop()

    def test_watch_disabled(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should only sync when watching is not enabled."""
        store.put("app/a.txt", "a")
        result = watch_azure_venv(
            AzureVenvOptions(root_dir=tmp_path), sink=configured_sink(), client=store
        )
        assert result.initial_sync.downloaded == 1
        assert result.handle is None

    def test_starts_after_sync(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should start a watcher once the initial sync has finished."""
        store.put("app/a.txt", "a")
        result = watch_azure_venv(
            AzureVenvOptions(root_dir=tmp_path),
            poll_interval=60.0,
            sink=configured_sink(),
            client=store,
        )
        try:
            assert result.initial_sync.downloaded == 1
            assert result.handle is not None
            assert result.handle.is_running is True
            # Initial listing only; the first poll waits a full interval
            assert store.list_calls == 1
        finally:
            result.stop()
        assert result.handle.is_running is False

    def test_no_watch_after_failed_sync(self, tmp_path: Path, store: FakeBlobStore) -> None:
        """Should not start watching when the initial sync failed."""
        store.list_error = AzureConnectionError("down", 503)
        result = watch_azure_venv(
            AzureVenvOptions(root_dir=tmp_path, watch_enabled=True),
            sink=configured_sink(),
            client=store,
        )
        assert result.handle is None
        assert result.initial_sync.attempted is True


class TestFileTree:
    """Tests for build_file_tree and sort_blobs."""

    def test_empty(self) -> None:
        """Should return no nodes for no files."""
        assert build_file_tree([]) == []

    def test_directories_before_files(self) -> None:
        """Should sort directories first, then files, alphabetically."""
        tree = build_file_tree(
            [
                SyncedFile("z.txt", 1, "p/z.txt"),
                SyncedFile("b/inner.txt", 2, "p/b/inner.txt"),
                SyncedFile("a.txt", 3, "p/a.txt"),
                SyncedFile("a/deep/x.txt", 4, "p/a/deep/x.txt"),
            ]
        )

        assert [(n.name, n.type) for n in tree] == [
            ("a", "directory"),
            ("b", "directory"),
            ("a.txt", "file"),
            ("z.txt", "file"),
        ]
        deep = tree[0].children[0]
        assert deep.path == "a/deep"
        assert deep.children[0].path == "a/deep/x.txt"
        assert deep.children[0].size == 4
        assert deep.children[0].blob_name == "p/a/deep/x.txt"

    def test_backslashes_normalized(self) -> None:
        """Should treat backslashes as separators."""
        tree = build_file_tree([SyncedFile("dir\\f.txt", 1, "dir/f.txt")])
        assert tree[0].name == "dir"
        assert tree[0].children[0].path == "dir/f.txt"

    def test_to_dict(self) -> None:
        """Should omit file fields on directories and vice versa."""
        tree = build_file_tree([SyncedFile("d/f.txt", 5, "d/f.txt")])
        assert tree[0].to_dict() == {
            "name": "d",
            "type": "directory",
            "path": "d",
            "children": [
                {"name": "f.txt", "type": "file", "path": "d/f.txt", "size": 5, "blobName": "d/f.txt"}
            ],
        }

    def test_sort_blobs(self) -> None:
        """Should sort blobs by relative path."""
        blobs = [
            BlobContent("p/b", "b", b"", 0, "1", "2024-01-01T00:00:00+00:00"),
            BlobContent("p/a", "a", b"", 0, "1", "2024-01-01T00:00:00+00:00"),
        ]
        assert [b.relative_path for b in sort_blobs(blobs)] == ["a", "b"]
