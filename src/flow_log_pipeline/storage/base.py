"""
Abstract base class for blob stores.

Provides the narrow capability the pipeline needs from wherever flow log
blobs live: list names with metadata, read bytes, read/write metadata.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class BlobItem:
    """A blob as returned by a listing."""

    name: str
    last_modified: Optional[datetime] = None
    metadata: dict[str, str] = field(default_factory=dict)
    size: Optional[int] = None


class BlobStore(ABC):
    """
    Abstract base class for blob stores.

    All store implementations (Azure Blob Storage, local directory) must
    implement this interface and raise the StorageError subclasses below so
    callers can tell credential, transient and configuration problems apart.
    """

    @property
    @abstractmethod
    def store_type(self) -> str:
        """Return the store type identifier (e.g., 'azure')."""
        pass

    @property
    @abstractmethod
    def account_name(self) -> str:
        """Return the storage account this store reads from."""
        pass

    @abstractmethod
    def list_blobs(self, container: str, prefix: Optional[str] = None) -> list[BlobItem]:
        """
        List blobs in a container, including their metadata.

        Args:
            container: Container name
            prefix: Optional blob name prefix filter

        Returns:
            BlobItems in the store's listing order

        Raises:
            StorageError: If listing fails
        """
        pass

    @abstractmethod
    def read_blob(self, container: str, blob_name: str) -> bytes:
        """
        Download a blob's content.

        Raises:
            StorageNotFoundError: If the blob does not exist
            StorageError: If the download fails
        """
        pass

    @abstractmethod
    def get_metadata(self, container: str, blob_name: str) -> dict[str, str]:
        """Return the blob's metadata (empty dict when none is set)."""
        pass

    @abstractmethod
    def set_metadata(
        self, container: str, blob_name: str, metadata: dict[str, str]
    ) -> None:
        """Replace the blob's metadata with the given mapping."""
        pass

    @abstractmethod
    def get_last_modified(self, container: str, blob_name: str) -> datetime:
        """Return the blob's last-modified time (timezone-aware)."""
        pass

    def close(self) -> None:
        """Release resources. Default implementation does nothing."""
        pass

    def __enter__(self) -> "BlobStore":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - ensures resources are released."""
        self.close()


class ContainerMetadataAccessor:
    """
    Binds a BlobStore to one container for the processing state gate.

    Exposes only get_metadata / set_metadata / get_last_modified.
    """

    def __init__(self, store: BlobStore, container: str):
        self._store = store
        self._container = container

    def get_metadata(self, blob_name: str) -> dict[str, str]:
        return self._store.get_metadata(self._container, blob_name)

    def set_metadata(self, blob_name: str, metadata: dict[str, str]) -> None:
        self._store.set_metadata(self._container, blob_name, metadata)

    def get_last_modified(self, blob_name: str) -> datetime:
        return self._store.get_last_modified(self._container, blob_name)


class StorageError(Exception):
    """Base exception for blob store errors."""

    def __init__(self, message: str, blob_name: Optional[str] = None):
        self.blob_name = blob_name
        self.message = message
        super().__init__(f"{message} (blob='{blob_name}')" if blob_name else message)


class StorageAuthError(StorageError):
    """Raised when credentials are missing or lack permission."""

    pass


class StorageNotFoundError(StorageError):
    """Raised when an account, container or blob does not exist."""

    pass


class StorageTransientError(StorageError):
    """Raised for network failures and server-side errors worth retrying later."""

    pass
