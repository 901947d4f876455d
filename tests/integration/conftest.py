"""
Shared fixtures for integration tests.

Provides:
- A local blob tree laid out like Azure flow log containers
- Settings pointing the pipeline at that tree
- A scripted HTTP collector behind httpx.MockTransport
"""

import gzip
import io
import json
import os
from pathlib import Path

import httpx
import pytest

from flow_log_pipeline.config import ProcessingSettings, Settings, SourceSettings
from flow_log_pipeline.delivery import BatchDeliveryClient
from flow_log_pipeline.monitoring import RetryPolicy

CONTAINER = "insights-logs-flowlogflowevent"
BLOB_TEMPLATE = (
    "flowLogResourceID=/SUB/RG/NW_EASTUS/VNET-FLOWLOG/"
    "y=2024/m=05/d=01/h={hour:02d}/m=00/macAddress=000D3A1B2C3D/PT1H.json"
)

# 2024-05-01T10:00:00Z
BASE_MTIME = 1714557600


class BlobTree:
    """Writes blobs under <root>/<account>/<container>/."""

    def __init__(self, root: Path):
        self.root = root

    def path(self, account: str, name: str) -> Path:
        return self.root / account / CONTAINER / name

    def add(self, account: str, hour: int, document, mtime_offset: int = 0, gzipped=False) -> str:
        name = BLOB_TEMPLATE.format(hour=hour)
        path = self.path(account, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = (
            document
            if isinstance(document, bytes)
            else json.dumps(document).encode("utf-8")
        )
        if gzipped:
            data = gzip.compress(data)
        path.write_bytes(data)
        mtime = BASE_MTIME + hour * 3600 + mtime_offset
        os.utime(path, (mtime, mtime))
        return name

    def touch(self, account: str, name: str, seconds: int = 60) -> None:
        """Simulate an append: move the blob's mtime forward."""
        path = self.path(account, name)
        mtime = path.stat().st_mtime + seconds
        os.utime(path, (mtime, mtime))

    def metadata(self, account: str, name: str) -> dict:
        sidecar = self.path(account, name + ".metadata.json")
        if not sidecar.exists():
            return {}
        return json.loads(sidecar.read_text())


@pytest.fixture
def blob_tree(tmp_path) -> BlobTree:
    return BlobTree(tmp_path / "blobs")


@pytest.fixture
def make_settings(blob_tree, tmp_path):
    """Factory for settings reading from the blob tree."""

    def factory(**processing) -> Settings:
        return Settings(
            source=SourceSettings(
                container=CONTAINER,
                store_type="local",
                local_root=str(blob_tree.root),
            ),
            processing=ProcessingSettings(**processing),
        )

    return factory


@pytest.fixture
def stdout():
    return io.StringIO()


class Collector:
    """Records posted batches; fails the calls listed in fail_calls."""

    def __init__(self, fail_calls=(), status=400):
        self.fail_calls = set(fail_calls)
        self.status = status
        self.calls = 0
        self.received: list[list[dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.calls in self.fail_calls:
            return httpx.Response(self.status, text="rejected")
        body = request.content
        if request.headers.get("Content-Encoding") == "gzip":
            body = gzip.decompress(body)
        self.received.append(json.loads(body))
        return httpx.Response(200)

    @property
    def records(self) -> list[dict]:
        return [record for batch in self.received for record in batch]


@pytest.fixture
def collector():
    return Collector()


@pytest.fixture
def make_collector():
    """Collector class, for tests that script failures."""
    return Collector


@pytest.fixture
def make_delivery():
    """Factory for delivery clients posting to a Collector without sleeping."""
    clients = []

    def factory(collector: Collector, batch_size: int = 1000, max_retries: int = 0):
        client = BatchDeliveryClient(
            "https://collector.example.com/ingest",
            batch_size=batch_size,
            retry_policy=RetryPolicy(
                max_retries=max_retries, jitter=lambda d, f: 0.0, sleep=lambda s: None
            ),
            transport=httpx.MockTransport(collector),
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        client.close()
