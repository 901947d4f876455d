"""
Pytest configuration and shared fixtures for unit tests.
"""

from datetime import datetime, timezone

import pytest

from flow_log_pipeline.monitoring.retry_handler import RetryPolicy

RESOURCE_ID = (
    "/SUBSCRIPTIONS/0000/RESOURCEGROUPS/NETWORK/PROVIDERS/"
    "MICROSOFT.NETWORK/NETWORKWATCHERS/NW_EASTUS/FLOWLOGS/VNET-FLOWLOG"
)


def make_record(tuples_by_rule, version=2, time="2024-05-01T10:00:00.0000000Z"):
    """Build one log record from {rule: {mac: [tuples]}}."""
    return {
        "time": time,
        "category": "FlowLogFlowEvent",
        "operationName": "FlowLogFlowEvent",
        "resourceId": RESOURCE_ID,
        "properties": {"Version": version},
        "flowRecords": {
            "flows": [
                {
                    "rule": rule,
                    "flowGroups": [
                        {"mac": mac, "flowTuples": list(tuples)}
                        for mac, tuples in groups.items()
                    ],
                }
                for rule, groups in tuples_by_rule.items()
            ]
        },
    }


@pytest.fixture
def record_factory():
    """Builder for log records (see make_record)."""
    return make_record


@pytest.fixture
def v2_tuple():
    """A complete 13-field version 2 tuple."""
    return "1714557600000,10.0.0.4,10.0.0.5,44931,443,6,O,A,B,10,1200,8,960"


@pytest.fixture
def v1_tuple():
    """A complete 8-field version 1 tuple."""
    return "1714557600,10.0.0.4,13.107.4.50,44931,443,T,O,A"


@pytest.fixture
def v2_document(v2_tuple):
    """Document with one version 2 record, two rules and three tuples."""
    return {
        "records": [
            make_record(
                {
                    "DefaultRule_AllowVnetOutBound": {
                        "000D3A1B2C3D": [
                            v2_tuple,
                            "1714557601000,10.0.0.4,10.0.0.6,44932,22,6,O,A,E,3,180,2,120",
                        ]
                    },
                    "UserRule_DenyAll": {
                        "000D3A1B2C3E": [
                            "1714557602000,10.0.0.9,10.0.0.4,5000,3389,6,I,D,B,,,,",
                        ]
                    },
                }
            )
        ]
    }


class FakeMetadataAccessor:
    """In-memory BlobMetadataAccessor with switchable failures."""

    def __init__(self, last_modified=None, metadata=None):
        self.last_modified = dict(last_modified or {})
        self.metadata = {name: dict(m) for name, m in (metadata or {}).items()}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = []

    def get_metadata(self, blob_name):
        if self.fail_reads:
            raise OSError("metadata read failed")
        return dict(self.metadata.get(blob_name, {}))

    def set_metadata(self, blob_name, metadata):
        if self.fail_writes:
            raise OSError("metadata write failed")
        self.writes.append((blob_name, dict(metadata)))
        self.metadata[blob_name] = dict(metadata)

    def get_last_modified(self, blob_name):
        if self.fail_reads:
            raise OSError("properties read failed")
        return self.last_modified[blob_name]


@pytest.fixture
def fake_accessor():
    """Accessor with one blob and no metadata."""
    return FakeMetadataAccessor(
        last_modified={"PT1H.json": datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)}
    )


@pytest.fixture
def sleeps():
    """Collects the delays a retry policy would have slept."""
    return []


@pytest.fixture
def no_wait_policy(sleeps):
    """Factory for retry policies that record delays instead of sleeping."""

    def factory(max_retries=3, **kwargs):
        return RetryPolicy(
            max_retries=max_retries,
            jitter=lambda delay, factor: 0.0,
            sleep=sleeps.append,
            **kwargs,
        )

    return factory
