"""
Local directory blob store.

Mirrors the Azure layout on disk for development and tests:

    <root>/<container>/<blob name>
    <root>/<container>/<blob name>.metadata.json   (processing metadata)

Last-modified comes from the file's mtime.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .base import (
    BlobItem,
    BlobStore,
    StorageAuthError,
    StorageError,
    StorageNotFoundError,
    StorageTransientError,
)

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory tree."""

    def __init__(self, root: Union[str, Path], account_name: Optional[str] = None):
        """
        Initialize the store.

        Args:
            root: Directory that holds one sub-directory per container
            account_name: Label reported as the account (default: root's name)
        """
        self._root = Path(root)
        self._account_name = account_name or self._root.name

    @property
    def store_type(self) -> str:
        return "local"

    @property
    def account_name(self) -> str:
        return self._account_name

    def _container_dir(self, container: str) -> Path:
        path = self._root / container
        if not path.is_dir():
            raise StorageNotFoundError(f"Container not found: {path}")
        return path

    def _blob_path(self, container: str, blob_name: str) -> Path:
        container_dir = self._container_dir(container)
        path = container_dir / blob_name
        # Blob names must stay inside the container directory
        try:
            path.resolve().relative_to(container_dir.resolve())
        except ValueError:
            raise StorageError("Blob name escapes container", blob_name=blob_name)
        return path

    @staticmethod
    def _metadata_path(blob_path: Path) -> Path:
        return blob_path.with_name(blob_path.name + METADATA_SUFFIX)

    @staticmethod
    def _translate(error: OSError, blob_name: str) -> StorageError:
        """Map filesystem errors onto the storage error taxonomy."""
        if isinstance(error, FileNotFoundError):
            return StorageNotFoundError("Blob not found", blob_name=blob_name)
        if isinstance(error, PermissionError):
            return StorageAuthError(f"Permission denied: {error}", blob_name=blob_name)
        return StorageTransientError(f"I/O error: {error}", blob_name=blob_name)

    def list_blobs(self, container: str, prefix: Optional[str] = None) -> list[BlobItem]:
        container_dir = self._container_dir(container)
        items = []
        try:
            for path in sorted(container_dir.rglob("*")):
                if not path.is_file() or path.name.endswith(METADATA_SUFFIX):
                    continue
                name = path.relative_to(container_dir).as_posix()
                if prefix and not name.startswith(prefix):
                    continue
                stat = path.stat()
                items.append(
                    BlobItem(
                        name=name,
                        last_modified=datetime.fromtimestamp(stat.st_mtime, timezone.utc),
                        metadata=self._read_metadata(path),
                        size=stat.st_size,
                    )
                )
        except OSError as e:
            raise self._translate(e, container) from e
        logger.debug(f"Listed {len(items)} blob(s) in {container_dir}")
        return items

    def read_blob(self, container: str, blob_name: str) -> bytes:
        path = self._blob_path(container, blob_name)
        try:
            return path.read_bytes()
        except OSError as e:
            raise self._translate(e, blob_name) from e

    def _read_metadata(self, blob_path: Path) -> dict[str, str]:
        metadata_path = self._metadata_path(blob_path)
        if not metadata_path.exists():
            return {}
        try:
            data = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable metadata file {metadata_path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def get_metadata(self, container: str, blob_name: str) -> dict[str, str]:
        path = self._blob_path(container, blob_name)
        if not path.exists():
            raise StorageNotFoundError("Blob not found", blob_name=blob_name)
        return self._read_metadata(path)

    def set_metadata(
        self, container: str, blob_name: str, metadata: dict[str, str]
    ) -> None:
        path = self._blob_path(container, blob_name)
        if not path.exists():
            raise StorageNotFoundError("Blob not found", blob_name=blob_name)
        try:
            self._metadata_path(path).write_text(
                json.dumps(dict(metadata), indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise self._translate(e, blob_name) from e

    def get_last_modified(self, container: str, blob_name: str) -> datetime:
        path = self._blob_path(container, blob_name)
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise self._translate(e, blob_name) from e
        return datetime.fromtimestamp(mtime, timezone.utc)
