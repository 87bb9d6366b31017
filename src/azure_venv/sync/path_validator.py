"""Path safety validation for blob names.

Turns a remote blob name into a local path that is guaranteed to live under
the sync root. Checks, in order:

1. Percent-decode the name (catches ``%2e%2e`` style traversal).
2. Reject any ``..`` segment.
3. Reject absolute paths.
4. Reject empty or whitespace-only names.
5. Strip the prefix (the name must start with it and must not strip to
   an empty remainder).
6. Join with the root, normalize, and re-verify containment.

All functions are pure: no filesystem access.
"""

from __future__ import annotations

import ntpath
import os
import posixpath
import re
from pathlib import Path
from urllib.parse import unquote

from azure_venv.core.errors import PathTraversalError

_SEGMENT_SPLIT = re.compile(r"[/\\]")


def _decode(name: str) -> str:
    try:
        return unquote(name, errors="strict")
    except UnicodeDecodeError:
        return name


def _check_structure(name: str, original: str) -> None:
    """Structural checks on an already-decoded name."""
    if any(segment == ".." for segment in _SEGMENT_SPLIT.split(name)):
        raise PathTraversalError(
            f'Blob name "{original}" contains path traversal segment ".."', original
        )

    if posixpath.isabs(name) or ntpath.isabs(name) or bool(ntpath.splitdrive(name)[0]):
        raise PathTraversalError(
            f'Blob name "{original}" resolves to an absolute path', original
        )

    if not name.strip():
        raise PathTraversalError(
            f'Blob name "{original}" is empty or contains only whitespace', original
        )


def strip_prefix(blob_name: str, prefix: str) -> str:
    """Strip the prefix from a blob name to produce a relative path.

    Args:
        blob_name: Full blob name, e.g. "config/prod/settings.json".
        prefix: Prefix to strip, e.g. "config/prod/".

    Returns:
        Relative path, e.g. "settings.json".

    Raises:
        PathTraversalError: If the name does not start with the prefix, or
            nothing (or only "/") remains after stripping.
    """
    if prefix == "":
        return blob_name

    if not blob_name.startswith(prefix):
        raise PathTraversalError(
            f'Blob name "{blob_name}" does not start with expected prefix "{prefix}"',
            blob_name,
        )

    relative = blob_name[len(prefix):]
    if relative in ("", "/"):
        raise PathTraversalError(
            f'Blob name "{blob_name}" resolves to empty path after stripping prefix "{prefix}"',
            blob_name,
        )
    return relative


def _contain(relative_path: str, root_dir: Path | str, original: str) -> Path:
    root = os.path.normpath(os.path.abspath(root_dir))
    resolved = os.path.normpath(os.path.join(root, relative_path))
    root_with_sep = root if root.endswith(os.sep) else root + os.sep

    if resolved != root and not resolved.startswith(root_with_sep):
        raise PathTraversalError(
            f'Resolved path "{resolved}" escapes root directory "{root}"', original
        )
    return Path(resolved)


def validate_and_resolve_path(relative_path: str, root_dir: Path | str) -> Path:
    """Validate a relative blob path and resolve it under root_dir.

    Args:
        relative_path: Blob path with the prefix already stripped.
        root_dir: Sync root directory.

    Returns:
        Absolute path guaranteed to be root_dir or inside it.

    Raises:
        PathTraversalError: If any check fails.
    """
    decoded = _decode(relative_path)
    _check_structure(decoded, relative_path)
    return _contain(decoded, root_dir, relative_path)


def resolve(blob_name: str, prefix: str, root_dir: Path | str) -> Path:
    """Turn a blob name into a verified local path.

    Structural checks run on the decoded full name before the prefix is
    stripped, and containment is re-verified after joining with the root.

    Raises:
        PathTraversalError: If any check fails.
    """
    decoded = _decode(blob_name)
    _check_structure(decoded, blob_name)
    relative = strip_prefix(decoded, _decode(prefix))
    _check_structure(relative, blob_name)
    return _contain(relative, root_dir, blob_name)
