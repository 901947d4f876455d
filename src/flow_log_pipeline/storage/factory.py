"""
Blob store factory.

Provides a factory function to create blob stores by type. Store
implementations are loaded lazily so the Azure SDK is only imported when
an Azure store is requested.
"""

import logging

from .base import BlobStore, StorageError

logger = logging.getLogger(__name__)

# Registry of available stores
_STORE_REGISTRY: dict[str, type[BlobStore]] = {}


def register_store(store_type: str, store_class: type[BlobStore]) -> None:
    """
    Register a blob store class.

    Args:
        store_type: Store identifier (e.g., 'azure')
        store_class: Class implementing BlobStore interface
    """
    _STORE_REGISTRY[store_type.lower()] = store_class
    logger.debug(f"Registered blob store: {store_type}")


def get_blob_store(store_type: str, **kwargs) -> BlobStore:
    """
    Get a blob store instance.

    Args:
        store_type: Store type ('azure' or 'local')
        **kwargs: Arguments passed to the store constructor.
                  For Azure: account_name, credential, account_url
                  For local: root, account_name

    Returns:
        BlobStore instance.

    Raises:
        StorageError: If store type is not supported or creation fails.

    Examples:
        store = get_blob_store('azure', account_name='flowlogs01')
        store = get_blob_store('local', root='data/flowlogs01')
    """
    store_type = store_type.lower()

    if store_type not in _STORE_REGISTRY:
        _load_store(store_type)

    if store_type not in _STORE_REGISTRY:
        available = list(_STORE_REGISTRY.keys()) if _STORE_REGISTRY else ["none"]
        raise StorageError(
            f"Unknown blob store: '{store_type}'. "
            f"Available stores: {', '.join(available)}"
        )

    store_class = _STORE_REGISTRY[store_type]

    try:
        store = store_class(**kwargs)
    except StorageError:
        raise
    except Exception as e:
        raise StorageError(f"Failed to create {store_type} blob store: {e}") from e

    logger.debug(f"Created {store_type} blob store")
    return store


def _load_store(store_type: str) -> None:
    """
    Lazy-load a store implementation.

    Args:
        store_type: Store type to load
    """
    if store_type == "local":
        from .local_backend import LocalBlobStore

        register_store("local", LocalBlobStore)
    elif store_type == "azure":
        try:
            from .azure_backend import AzureBlobStore

            register_store("azure", AzureBlobStore)
        except ImportError as e:
            logger.warning(
                f"Azure blob store not available ({e}). "
                "Install with: pip install 'flow-log-pipeline[azure]'"
            )


def list_available_stores() -> list[str]:
    """
    List all registered store types.

    Returns:
        List of store type identifiers.
    """
    for store_type in ["local", "azure"]:
        if store_type not in _STORE_REGISTRY:
            _load_store(store_type)

    return list(_STORE_REGISTRY.keys())
