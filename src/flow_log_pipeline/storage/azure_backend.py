"""
Azure Blob Storage backend.

Authenticates with DefaultAzureCredential, which covers managed identity in
Azure, Azure CLI logins for local development and service principal
environment variables.

Note: Azure bumps a blob's Last-Modified on every metadata write, after the
processing record has captured the earlier value. Each run then sees every
marked blob as modified, so incremental skipping does not take effect on
this store (see DESIGN.md).
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient

from .base import (
    BlobItem,
    BlobStore,
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
)

logger = logging.getLogger(__name__)


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@contextmanager
def _translate_errors(blob_name: Optional[str] = None) -> Iterator[None]:
    """Map Azure SDK exceptions onto the storage error taxonomy."""
    try:
        yield
    except ClientAuthenticationError as e:
        raise StorageAuthError(f"Authentication failed: {e.message}", blob_name) from e
    except ResourceNotFoundError as e:
        raise StorageNotFoundError(f"Not found: {e.message}", blob_name) from e
    except (ServiceRequestError, ServiceResponseError) as e:
        raise StorageTransientError(f"Network error: {e.message}", blob_name) from e
    except HttpResponseError as e:
        status = e.status_code or 0
        if status in (401, 403):
            raise StorageAuthError(
                f"Authorization failed ({status}): {e.message}", blob_name
            ) from e
        if status == 404:
            raise StorageNotFoundError(f"Not found: {e.message}", blob_name) from e
        if status in (408, 429) or status >= 500:
            raise StorageTransientError(
                f"Service error ({status}): {e.message}", blob_name
            ) from e
        raise StorageError(f"Request failed ({status}): {e.message}", blob_name) from e
    except AzureError as e:
        raise StorageTransientError(f"Azure error: {e}", blob_name) from e


class AzureBlobStore(BlobStore):
    """Blob store backed by an Azure storage account."""

    def __init__(
        self,
        account_name: str,
        credential: Optional[Any] = None,
        account_url: Optional[str] = None,
    ):
        """
        Initialize the store.

        Args:
            account_name: Storage account name
            credential: Azure credential (default: DefaultAzureCredential)
            account_url: Override for the blob endpoint URL
        """
        self._account_name = account_name
        url = account_url or f"https://{account_name}.blob.core.windows.net"
        self._client = BlobServiceClient(
            account_url=url,
            credential=credential or DefaultAzureCredential(),
        )
        logger.debug(f"Azure blob store initialized for {url}")

    @property
    def store_type(self) -> str:
        return "azure"

    @property
    def account_name(self) -> str:
        return self._account_name

    def _blob_client(self, container: str, blob_name: str):
        return self._client.get_blob_client(container=container, blob=blob_name)

    def list_blobs(self, container: str, prefix: Optional[str] = None) -> list[BlobItem]:
        container_client = self._client.get_container_client(container)
        with _translate_errors():
            return [
                BlobItem(
                    name=blob.name,
                    last_modified=(
                        _ensure_utc(blob.last_modified) if blob.last_modified else None
                    ),
                    metadata=dict(blob.metadata or {}),
                    size=blob.size,
                )
                for blob in container_client.list_blobs(
                    name_starts_with=prefix, include=["metadata"]
                )
            ]

    def read_blob(self, container: str, blob_name: str) -> bytes:
        with _translate_errors(blob_name):
            return self._blob_client(container, blob_name).download_blob().readall()

    def get_metadata(self, container: str, blob_name: str) -> dict[str, str]:
        with _translate_errors(blob_name):
            properties = self._blob_client(container, blob_name).get_blob_properties()
        return dict(properties.metadata or {})

    def set_metadata(
        self, container: str, blob_name: str, metadata: dict[str, str]
    ) -> None:
        with _translate_errors(blob_name):
            self._blob_client(container, blob_name).set_blob_metadata(metadata=metadata)

    def get_last_modified(self, container: str, blob_name: str) -> datetime:
        with _translate_errors(blob_name):
            properties = self._blob_client(container, blob_name).get_blob_properties()
        return _ensure_utc(properties.last_modified)

    def close(self) -> None:
        self._client.close()
