"""Introspection helpers for synced content.

This module provides:
- FileTreeNode: One file or directory in the synced tree
- build_file_tree: Hierarchical tree from a flat list of synced files
- files_from_manifest: Tree input from manifest entries (filesystem mode)
- sort_blobs: In-memory blobs sorted by relative path
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from azure_venv.sync.manifest import SyncManifest
from azure_venv.sync.types import BlobContent


@dataclass(frozen=True)
class SyncedFile:
    """Flat description of one synced file."""

    local_path: str
    size: int
    blob_name: str


@dataclass
class FileTreeNode:
    """A node of the synced file tree.

    Attributes:
        name: Last path segment.
        type: "file" or "directory".
        path: Forward-slash path relative to the sync root or prefix.
        children: Child nodes (directories only).
        size: File size in bytes (files only).
        blob_name: Full blob name (files only).
    """

    name: str
    type: str
    path: str
    children: list[FileTreeNode] = field(default_factory=list)
    size: int | None = None
    blob_name: str | None = None

    @property
    def is_directory(self) -> bool:
        return self.type == "directory"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary, omitting empty fields."""
        data: dict[str, Any] = {"name": self.name, "type": self.type, "path": self.path}
        if self.is_directory:
            if self.children:
                data["children"] = [child.to_dict() for child in self.children]
        else:
            data["size"] = self.size
            data["blobName"] = self.blob_name
        return data


def _sort_key(node: FileTreeNode) -> tuple[int, str]:
    return (0 if node.is_directory else 1, node.name)


def build_file_tree(files: Iterable[SyncedFile | BlobContent]) -> list[FileTreeNode]:
    """Build a hierarchical tree from a flat list of synced files.

    Directories come before files at every level; each group is sorted
    alphabetically by name.

    Args:
        files: SyncedFile records or in-memory BlobContent.

    Returns:
        Root-level nodes.
    """
    root = FileTreeNode(name="", type="directory", path="")
    # Directory lookup by path, so siblings are found without scanning
    directories: dict[str, FileTreeNode] = {"": root}

    for item in files:
        if isinstance(item, BlobContent):
            item = SyncedFile(item.relative_path, item.size, item.blob_name)
        path = item.local_path.replace("\\", "/")
        segments = [s for s in path.split("/") if s]
        if not segments:
            continue

        parent = root
        for i, segment in enumerate(segments[:-1]):
            dir_path = "/".join(segments[: i + 1])
            node = directories.get(dir_path)
            if node is None:
                node = FileTreeNode(name=segment, type="directory", path=dir_path)
                directories[dir_path] = node
                parent.children.append(node)
            parent = node

        parent.children = [c for c in parent.children if c.name != segments[-1] or c.is_directory]
        parent.children.append(
            FileTreeNode(
                name=segments[-1],
                type="file",
                path="/".join(segments),
                size=item.size,
                blob_name=item.blob_name,
            )
        )

    for node in directories.values():
        node.children.sort(key=_sort_key)
    return root.children


def files_from_manifest(manifest: SyncManifest) -> list[SyncedFile]:
    """List the files recorded in a manifest."""
    return [
        SyncedFile(entry.local_path, entry.content_length, entry.blob_name)
        for entry in manifest.entries.values()
    ]


def sort_blobs(blobs: Iterable[BlobContent]) -> list[BlobContent]:
    """Return blobs sorted by relative path."""
    return sorted(blobs, key=lambda b: b.relative_path)
