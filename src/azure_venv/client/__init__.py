"""Client module - Azure Blob Storage access."""

from azure_venv.client.api import DEFAULT_MAX_RETRIES, BlobStoreClient

__all__ = [
    "BlobStoreClient",
    "DEFAULT_MAX_RETRIES",
]
