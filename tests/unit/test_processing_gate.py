"""
Unit tests for the processing state gate.

Tests:
- should_process decisions (strict comparison, fail-open cases, force)
- ProcessingRecord metadata round trip
- ProcessingStateGate check/mark behavior with failing accessors
"""

from datetime import datetime, timedelta, timezone

import pytest

from flow_log_pipeline.config.constants import (
    METADATA_LAST_PROCESSED,
    METADATA_PROCESSED_BLOB_LAST_MODIFIED,
    METADATA_PROCESSED_BY,
    METADATA_RECORD_COUNT,
    PROCESSED_BY_TAG,
)
from flow_log_pipeline.state import (
    ProcessingRecord,
    ProcessingStateGate,
    build_processed_metadata,
    parse_timestamp,
    should_process,
)

BLOB_TIME = datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def metadata_for(processed_last_modified: datetime) -> dict:
    """Metadata as written after processing a blob with this last-modified."""
    return build_processed_metadata(processed_last_modified, 42, now=NOW).to_metadata()


class TestShouldProcess:
    """Tests for the should_process decision."""

    def test_equal_timestamps_skip(self):
        """A blob unchanged since processing is not processed again."""
        assert should_process(BLOB_TIME, metadata_for(BLOB_TIME)) is False

    def test_one_tick_later_processes(self):
        """Any later last-modified triggers processing."""
        later = BLOB_TIME + timedelta(microseconds=1)

        assert should_process(later, metadata_for(BLOB_TIME)) is True

    def test_earlier_timestamp_skips(self):
        """A last-modified before the recorded one is skipped."""
        earlier = BLOB_TIME - timedelta(seconds=1)

        assert should_process(earlier, metadata_for(BLOB_TIME)) is False

    @pytest.mark.parametrize("metadata", [None, {}])
    def test_absent_metadata_processes(self, metadata):
        """Blobs without metadata are processed."""
        assert should_process(BLOB_TIME, metadata) is True

    @pytest.mark.parametrize(
        "value", ["", "not-a-date", "2024-13-45T99:00:00Z", "yesterday"]
    )
    def test_corrupt_timestamp_processes(self, value):
        """Unparsable stored timestamps fail open."""
        metadata = {METADATA_PROCESSED_BLOB_LAST_MODIFIED: value}

        assert should_process(BLOB_TIME, metadata) is True

    def test_unrelated_metadata_processes(self):
        """Metadata without the processing key is treated as absent."""
        assert should_process(BLOB_TIME, {"owner": "network-team"}) is True

    def test_unknown_blob_time_processes(self):
        """Without a last-modified time the blob is processed."""
        assert should_process(None, metadata_for(BLOB_TIME)) is True

    @pytest.mark.parametrize(
        "metadata",
        [None, {}, {METADATA_PROCESSED_BLOB_LAST_MODIFIED: "garbage"}, "sentinel"],
    )
    def test_force_always_processes(self, metadata):
        """force_reprocess wins over any metadata."""
        if metadata == "sentinel":
            metadata = metadata_for(BLOB_TIME + timedelta(days=1))

        assert should_process(BLOB_TIME, metadata, force_reprocess=True) is True

    def test_lowercased_keys_are_read(self):
        """Stores that lowercase metadata keys are handled."""
        metadata = {k.lower(): v for k, v in metadata_for(BLOB_TIME).items()}

        assert should_process(BLOB_TIME, metadata) is False

    def test_timezone_offsets_compare_as_instants(self):
        """Offsets are normalized before comparing."""
        metadata = {METADATA_PROCESSED_BLOB_LAST_MODIFIED: "2024-05-01T13:00:00+02:00"}

        assert should_process(BLOB_TIME, metadata) is False

    def test_naive_stored_timestamp_is_utc(self):
        """Timestamps without offset are read as UTC."""
        metadata = {METADATA_PROCESSED_BLOB_LAST_MODIFIED: "2024-05-01T11:00:00"}

        assert should_process(BLOB_TIME, metadata) is False


class TestProcessingRecord:
    """Tests for the metadata representation."""

    def test_to_metadata_keys_and_values(self):
        """All four keys are written as strings."""
        metadata = build_processed_metadata(BLOB_TIME, 42, now=NOW).to_metadata()

        assert metadata == {
            METADATA_LAST_PROCESSED: "2024-05-01T12:30:00+00:00",
            METADATA_PROCESSED_BLOB_LAST_MODIFIED: "2024-05-01T11:00:00+00:00",
            METADATA_RECORD_COUNT: "42",
            METADATA_PROCESSED_BY: PROCESSED_BY_TAG,
        }

    def test_round_trip(self):
        """from_metadata reads back what to_metadata wrote."""
        record = build_processed_metadata(BLOB_TIME, 7, now=NOW)

        assert ProcessingRecord.from_metadata(record.to_metadata()) == record

    @pytest.mark.parametrize(
        "broken",
        [
            {METADATA_RECORD_COUNT: "many"},
            {METADATA_LAST_PROCESSED: "never"},
            {METADATA_PROCESSED_BLOB_LAST_MODIFIED: ""},
        ],
    )
    def test_corrupt_fields_return_none(self, broken):
        """Any unparsable field makes the record unreadable."""
        metadata = {**metadata_for(BLOB_TIME), **broken}

        assert ProcessingRecord.from_metadata(metadata) is None

    def test_empty_metadata_returns_none(self):
        """No metadata means no record."""
        assert ProcessingRecord.from_metadata({}) is None

    def test_build_defaults_to_current_time(self):
        """Without an explicit clock the current UTC time is used."""
        before = datetime.now(timezone.utc)

        record = build_processed_metadata(BLOB_TIME, 1)

        assert record.last_processed_at >= before
        assert record.processed_by == PROCESSED_BY_TAG


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_parses_azure_style(self):
        """Seven-digit fractional seconds with Z are accepted."""
        parsed = parse_timestamp("2024-05-01T11:00:00.1234567Z")

        assert parsed is not None
        assert parsed.tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "  ", 12, "not a date"])
    def test_unusable_values(self, value):
        """Missing and malformed values return None."""
        assert parse_timestamp(value) is None


class TestProcessingStateGate:
    """Tests for ProcessingStateGate."""

    def test_first_run_processes(self, fake_accessor):
        """A blob without metadata is processed."""
        decision = ProcessingStateGate(fake_accessor).check("PT1H.json")

        assert decision.should_process is True
        assert decision.reason == "no processing metadata"
        assert decision.blob_last_modified == BLOB_TIME

    def test_mark_then_check_skips(self, fake_accessor):
        """After marking, an unchanged blob is skipped."""
        gate = ProcessingStateGate(fake_accessor, clock=lambda: NOW)

        assert gate.mark_processed("PT1H.json", BLOB_TIME, 12) is True
        decision = gate.check("PT1H.json")

        assert decision.should_process is False
        assert decision.reason == "unchanged since last processed"
        assert decision.previous.record_count == 12

    def test_modified_blob_processes_again(self, fake_accessor):
        """A blob appended to after marking is processed."""
        gate = ProcessingStateGate(fake_accessor, clock=lambda: NOW)
        gate.mark_processed("PT1H.json", BLOB_TIME, 12)
        fake_accessor.last_modified["PT1H.json"] = BLOB_TIME + timedelta(minutes=5)

        decision = gate.check("PT1H.json")

        assert decision.should_process is True
        assert decision.reason == "modified since last processed"

    def test_forced_gate_ignores_metadata(self, fake_accessor):
        """A forcing gate processes without reading anything."""
        fake_accessor.fail_reads = True

        decision = ProcessingStateGate(fake_accessor, force_reprocess=True).check(
            "PT1H.json"
        )

        assert decision.should_process is True
        assert decision.reason == "forced"

    def test_read_failure_fails_open(self, fake_accessor):
        """Unreadable metadata means processing, not skipping."""
        ProcessingStateGate(fake_accessor).mark_processed("PT1H.json", BLOB_TIME, 1)
        fake_accessor.fail_reads = True

        decision = ProcessingStateGate(fake_accessor).check("PT1H.json")

        assert decision.should_process is True

    def test_corrupt_metadata_reason(self, fake_accessor):
        """Corrupt metadata is reported as unreadable."""
        fake_accessor.metadata["PT1H.json"] = {
            METADATA_PROCESSED_BLOB_LAST_MODIFIED: "garbage"
        }

        decision = ProcessingStateGate(fake_accessor).check("PT1H.json")

        assert decision.should_process is True
        assert decision.reason == "unreadable processing metadata"

    def test_listing_values_skip_accessor_reads(self, fake_accessor):
        """Values supplied by the caller are used as-is."""
        fake_accessor.fail_reads = True

        decision = ProcessingStateGate(fake_accessor).check(
            "PT1H.json", BLOB_TIME, metadata_for(BLOB_TIME)
        )

        assert decision.should_process is False

    def test_write_failure_returns_false(self, fake_accessor):
        """Metadata write failures are reported, not raised."""
        fake_accessor.fail_writes = True

        assert ProcessingStateGate(fake_accessor).mark_processed(
            "PT1H.json", BLOB_TIME, 5
        ) is False

    def test_mark_overwrites_existing_metadata(self, fake_accessor):
        """Metadata is replaced, never merged."""
        fake_accessor.metadata["PT1H.json"] = {"owner": "network-team"}

        ProcessingStateGate(fake_accessor, clock=lambda: NOW).mark_processed(
            "PT1H.json", BLOB_TIME, 5
        )

        assert "owner" not in fake_accessor.metadata["PT1H.json"]
        assert fake_accessor.metadata["PT1H.json"][METADATA_RECORD_COUNT] == "5"

    def test_mark_reads_last_modified_when_unknown(self, fake_accessor):
        """The blob's last-modified is looked up when not supplied."""
        ProcessingStateGate(fake_accessor, clock=lambda: NOW).mark_processed(
            "PT1H.json", None, 5
        )

        written = fake_accessor.writes[-1][1]
        assert written[METADATA_PROCESSED_BLOB_LAST_MODIFIED] == BLOB_TIME.isoformat()

    def test_mark_without_last_modified_fails_softly(self, fake_accessor):
        """No last-modified means no marking, without raising."""
        fake_accessor.fail_reads = True

        assert ProcessingStateGate(fake_accessor).mark_processed(
            "PT1H.json", None, 5
        ) is False
        assert fake_accessor.writes == []
