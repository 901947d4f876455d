"""
Unit tests for the local directory blob store and the store factory.
"""

import json
import os
from datetime import datetime, timezone

import pytest

from flow_log_pipeline.storage import (
    BlobStore,
    ContainerMetadataAccessor,
    StorageError,
    StorageNotFoundError,
    get_blob_store,
    list_available_stores,
)
from flow_log_pipeline.storage.local_backend import METADATA_SUFFIX, LocalBlobStore

CONTAINER = "insights-logs-flowlogflowevent"
BLOB = "flowLogResourceID=/NW/y=2024/m=05/d=01/h=10/m=00/PT1H.json"


@pytest.fixture
def store(tmp_path):
    """Local store with two blobs in the flow log container."""
    container = tmp_path / CONTAINER
    for name in [BLOB, BLOB.replace("h=10", "h=11")]:
        path = container / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('{"records": []}')
    return LocalBlobStore(tmp_path, account_name="flowlogs01")


class TestListing:
    """Tests for list_blobs."""

    def test_lists_blobs_sorted(self, store):
        """Blob names are relative paths in sorted order."""
        names = [item.name for item in store.list_blobs(CONTAINER)]

        assert names == [BLOB, BLOB.replace("h=10", "h=11")]

    def test_prefix_filter(self, store):
        """Only names starting with the prefix are returned."""
        items = store.list_blobs(CONTAINER, prefix="flowLogResourceID=/NW/y=2024/m=05/d=01/h=11")

        assert len(items) == 1

    def test_sidecars_not_listed(self, store):
        """Metadata sidecar files are hidden."""
        store.set_metadata(CONTAINER, BLOB, {"recordCount": "1"})

        names = [item.name for item in store.list_blobs(CONTAINER)]

        assert not any(name.endswith(METADATA_SUFFIX) for name in names)
        assert len(names) == 2

    def test_listing_includes_metadata_and_time(self, store):
        """Listings carry metadata and an aware last-modified time."""
        store.set_metadata(CONTAINER, BLOB, {"recordCount": "3"})

        item = store.list_blobs(CONTAINER)[0]

        assert item.metadata == {"recordCount": "3"}
        assert item.last_modified.tzinfo is not None
        assert item.size == len('{"records": []}')

    def test_missing_container(self, store):
        """An absent container is reported as not found."""
        with pytest.raises(StorageNotFoundError):
            store.list_blobs("no-such-container")


class TestBlobAccess:
    """Tests for reading blobs and metadata."""

    def test_read_blob(self, store):
        """Content is returned as bytes."""
        assert store.read_blob(CONTAINER, BLOB) == b'{"records": []}'

    def test_read_missing_blob(self, store):
        """Missing blobs raise StorageNotFoundError."""
        with pytest.raises(StorageNotFoundError) as exc_info:
            store.read_blob(CONTAINER, "missing.json")

        assert exc_info.value.blob_name == "missing.json"

    def test_metadata_round_trip(self, store):
        """Metadata written is read back."""
        store.set_metadata(CONTAINER, BLOB, {"a": "1", "b": "2"})

        assert store.get_metadata(CONTAINER, BLOB) == {"a": "1", "b": "2"}

    def test_metadata_replaced(self, store):
        """set_metadata replaces rather than merges."""
        store.set_metadata(CONTAINER, BLOB, {"a": "1"})
        store.set_metadata(CONTAINER, BLOB, {"b": "2"})

        assert store.get_metadata(CONTAINER, BLOB) == {"b": "2"}

    def test_no_metadata_is_empty(self, store):
        """Blobs without a sidecar have empty metadata."""
        assert store.get_metadata(CONTAINER, BLOB) == {}

    def test_corrupt_sidecar_is_empty(self, store, tmp_path):
        """Unreadable sidecars are treated as no metadata."""
        sidecar = tmp_path / CONTAINER / (BLOB + METADATA_SUFFIX)
        sidecar.write_text("{broken")

        assert store.get_metadata(CONTAINER, BLOB) == {}

    def test_metadata_write_keeps_last_modified(self, store, tmp_path):
        """Writing metadata does not touch the blob's mtime."""
        path = tmp_path / CONTAINER / BLOB
        os.utime(path, (1714557600, 1714557600))

        store.set_metadata(CONTAINER, BLOB, {"a": "1"})

        assert store.get_last_modified(CONTAINER, BLOB) == datetime(
            2024, 5, 1, 10, 0, tzinfo=timezone.utc
        )

    def test_metadata_for_missing_blob(self, store):
        """Metadata operations on missing blobs raise not found."""
        with pytest.raises(StorageNotFoundError):
            store.set_metadata(CONTAINER, "missing.json", {})

    def test_path_traversal_rejected(self, store):
        """Blob names cannot escape the container."""
        with pytest.raises(StorageError):
            store.read_blob(CONTAINER, "../outside.json")


class TestContainerMetadataAccessor:
    """Tests for the gate adapter."""

    def test_delegates_to_store(self, store):
        """The accessor binds one container."""
        accessor = ContainerMetadataAccessor(store, CONTAINER)

        accessor.set_metadata(BLOB, {"k": "v"})

        assert accessor.get_metadata(BLOB) == {"k": "v"}
        assert accessor.get_last_modified(BLOB) == store.get_last_modified(CONTAINER, BLOB)

    def test_sidecar_is_json(self, store, tmp_path):
        """Sidecars are plain JSON files next to the blob."""
        ContainerMetadataAccessor(store, CONTAINER).set_metadata(BLOB, {"k": "v"})

        sidecar = tmp_path / CONTAINER / (BLOB + METADATA_SUFFIX)
        assert json.loads(sidecar.read_text()) == {"k": "v"}


class TestFactory:
    """Tests for get_blob_store."""

    def test_local_store(self, tmp_path):
        """The local store is always available."""
        store = get_blob_store("local", root=tmp_path, account_name="flowlogs01")

        assert isinstance(store, BlobStore)
        assert store.store_type == "local"
        assert store.account_name == "flowlogs01"

    def test_type_is_case_insensitive(self, tmp_path):
        """Store types are matched case-insensitively."""
        assert get_blob_store("LOCAL", root=tmp_path).store_type == "local"

    def test_unknown_type(self):
        """Unknown store types raise StorageError."""
        with pytest.raises(StorageError) as exc_info:
            get_blob_store("ftp")

        assert "ftp" in str(exc_info.value)

    def test_bad_arguments_wrapped(self):
        """Constructor failures are reported as StorageError."""
        with pytest.raises(StorageError):
            get_blob_store("local", unexpected=True)

    def test_available_stores_include_local(self):
        """list_available_stores reports loadable stores."""
        assert "local" in list_available_stores()
