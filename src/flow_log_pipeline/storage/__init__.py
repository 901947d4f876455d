"""
Blob store abstraction for flow log sources.

Usage:
    from flow_log_pipeline.storage import get_blob_store

    with get_blob_store('azure', account_name='flowlogs01') as store:
        for blob in store.list_blobs('insights-logs-flowlogflowevent'):
            content = store.read_blob('insights-logs-flowlogflowevent', blob.name)
"""

from .base import (
    BlobItem,
    BlobStore,
    ContainerMetadataAccessor,
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
)
from .factory import get_blob_store, list_available_stores, register_store

__all__ = [
    # Base classes and exceptions
    "BlobItem",
    "BlobStore",
    "ContainerMetadataAccessor",
    "StorageError",
    "StorageAuthError",
    "StorageNotFoundError",
    "StorageTransientError",
    # Factory functions
    "get_blob_store",
    "register_store",
    "list_available_stores",
]
