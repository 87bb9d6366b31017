"""azure-venv - Sync an Azure Blob Storage prefix and its .env into a process.

Typical use at application startup:

    from azure_venv import init_azure_venv

    result = init_azure_venv()
"""

from azure_venv.core import (
    AuthenticationError,
    AzureConnectionError,
    AzureVenvConfig,
    AzureVenvError,
    AzureVenvOptions,
    BlobNotFoundError,
    ConfigurationError,
    EnvSource,
    ErrorKind,
    LogLevel,
    PathTraversalError,
    SyncError,
    SyncMode,
    SyncTarget,
)
from azure_venv.initialize import (
    NO_OP_SYNC_RESULT,
    EnvDetails,
    SyncResult,
    WatchResult,
    init_azure_venv,
    watch_azure_venv,
)
from azure_venv.introspection import FileTreeNode, build_file_tree, sort_blobs

__all__ = [
    # Entry points
    "init_azure_venv",
    "watch_azure_venv",
    "NO_OP_SYNC_RESULT",
    "EnvDetails",
    "SyncResult",
    "WatchResult",
    # Introspection
    "FileTreeNode",
    "build_file_tree",
    "sort_blobs",
    # Config and types
    "AzureVenvConfig",
    "AzureVenvOptions",
    "EnvSource",
    "LogLevel",
    "SyncMode",
    "SyncTarget",
    # Errors
    "AuthenticationError",
    "AzureConnectionError",
    "AzureVenvError",
    "BlobNotFoundError",
    "ConfigurationError",
    "ErrorKind",
    "PathTraversalError",
    "SyncError",
]
