"""
Incremental processing state kept in blob metadata.

After a blob has been denormalized successfully its metadata is
overwritten with a processing record:

    lastProcessed              ISO-8601 time of the processing pass
    processedBlobLastModified  ISO-8601 last-modified of the blob at that time
    recordCount                number of flat records produced (decimal)
    processedBy                fixed tag identifying this pipeline

On the next run a blob is processed again only if it has been modified
since (strictly later last-modified). The metadata is advisory: when it is
missing, unreadable or corrupt the blob is processed again, and a failed
metadata write only costs a future reprocessing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Protocol

from dateutil import parser as date_parser

from ..config.constants import (
    METADATA_LAST_PROCESSED,
    METADATA_PROCESSED_BLOB_LAST_MODIFIED,
    METADATA_PROCESSED_BY,
    METADATA_RECORD_COUNT,
    PROCESSED_BY_TAG,
)

logger = logging.getLogger(__name__)


class BlobMetadataAccessor(Protocol):
    """Narrow capability the gate needs from a blob store."""

    def get_metadata(self, blob_name: str) -> dict[str, str]: ...

    def set_metadata(self, blob_name: str, metadata: dict[str, str]) -> None: ...

    def get_last_modified(self, blob_name: str) -> datetime: ...


def _ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: object) -> Optional[datetime]:
    """
    Parse an ISO-8601 metadata timestamp.

    Returns:
        UTC datetime, or None when the value is missing or unparsable
    """
    if isinstance(value, datetime):
        return _ensure_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return _ensure_utc(date_parser.isoparse(value.strip()))
    except (ValueError, OverflowError):
        return None


def _lookup(metadata: Mapping[str, str], key: str) -> Optional[str]:
    """Case-insensitive metadata lookup (Azure may lowercase keys)."""
    if key in metadata:
        return metadata[key]
    lowered = key.lower()
    for candidate, value in metadata.items():
        if candidate.lower() == lowered:
            return value
    return None


@dataclass(frozen=True)
class ProcessingRecord:
    """Processing annotation persisted as blob metadata."""

    last_processed_at: datetime
    source_last_modified_at_processing: datetime
    record_count: int
    processed_by: str = PROCESSED_BY_TAG

    def to_metadata(self) -> dict[str, str]:
        """Convert to the string-valued metadata stored on the blob."""
        return {
            METADATA_LAST_PROCESSED: _ensure_utc(self.last_processed_at).isoformat(),
            METADATA_PROCESSED_BLOB_LAST_MODIFIED: _ensure_utc(
                self.source_last_modified_at_processing
            ).isoformat(),
            METADATA_RECORD_COUNT: str(self.record_count),
            METADATA_PROCESSED_BY: self.processed_by,
        }

    @classmethod
    def from_metadata(
        cls, metadata: Optional[Mapping[str, str]]
    ) -> Optional["ProcessingRecord"]:
        """
        Read a processing record back from blob metadata.

        Returns:
            ProcessingRecord, or None if any field is missing or corrupt
        """
        if not metadata:
            return None

        last_processed = parse_timestamp(_lookup(metadata, METADATA_LAST_PROCESSED))
        source_modified = parse_timestamp(
            _lookup(metadata, METADATA_PROCESSED_BLOB_LAST_MODIFIED)
        )
        if last_processed is None or source_modified is None:
            return None

        try:
            record_count = int(_lookup(metadata, METADATA_RECORD_COUNT) or "")
        except ValueError:
            return None

        return cls(
            last_processed_at=last_processed,
            source_last_modified_at_processing=source_modified,
            record_count=record_count,
            processed_by=_lookup(metadata, METADATA_PROCESSED_BY) or "",
        )


def should_process(
    blob_last_modified: Optional[datetime],
    stored_metadata: Optional[Mapping[str, str]],
    force_reprocess: bool = False,
) -> bool:
    """
    Decide whether a blob needs (re)processing.

    Args:
        blob_last_modified: Current last-modified time of the blob
        stored_metadata: Blob metadata, or None when absent/unreadable
        force_reprocess: Always process when True

    Returns:
        True unless the stored processedBlobLastModified is at or after
        the blob's current last-modified time
    """
    if force_reprocess:
        return True
    if not stored_metadata:
        return True

    processed_last_modified = parse_timestamp(
        _lookup(stored_metadata, METADATA_PROCESSED_BLOB_LAST_MODIFIED)
    )
    if processed_last_modified is None:
        return True
    if blob_last_modified is None:
        return True

    # Equal timestamps count as already processed
    return _ensure_utc(blob_last_modified) > processed_last_modified


def build_processed_metadata(
    blob_last_modified: datetime,
    record_count: int,
    now: Optional[datetime] = None,
) -> ProcessingRecord:
    """Build the processing record to persist after a successful pass."""
    return ProcessingRecord(
        last_processed_at=_ensure_utc(now or datetime.now(timezone.utc)),
        source_last_modified_at_processing=_ensure_utc(blob_last_modified),
        record_count=record_count,
    )


@dataclass
class GateDecision:
    """Outcome of checking one blob against its stored state."""

    blob_name: str
    should_process: bool
    reason: str
    blob_last_modified: Optional[datetime] = None
    previous: Optional[ProcessingRecord] = None


class ProcessingStateGate:
    """
    Brackets per-blob processing: check before, mark after.

    The gate never owns blobs; it only reads and writes their metadata
    through a BlobMetadataAccessor.
    """

    def __init__(
        self,
        accessor: BlobMetadataAccessor,
        force_reprocess: bool = False,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the gate.

        Args:
            accessor: Metadata capability for one container
            force_reprocess: Process every blob regardless of metadata
            clock: Returns the current time (default: UTC now)
        """
        self._accessor = accessor
        self.force_reprocess = force_reprocess
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check(
        self,
        blob_name: str,
        blob_last_modified: Optional[datetime] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> GateDecision:
        """
        Decide whether a blob must be processed.

        Last-modified and metadata are read through the accessor unless
        the caller already has them (e.g. from a listing). Read failures
        are treated as missing metadata.
        """
        if self.force_reprocess:
            return GateDecision(
                blob_name=blob_name,
                should_process=True,
                reason="forced",
                blob_last_modified=blob_last_modified,
            )

        if blob_last_modified is None:
            try:
                blob_last_modified = self._accessor.get_last_modified(blob_name)
            except Exception as e:
                logger.warning(f"Could not read last-modified for {blob_name}: {e}")

        if metadata is None:
            try:
                metadata = self._accessor.get_metadata(blob_name)
            except Exception as e:
                logger.warning(
                    f"Could not read metadata for {blob_name}, treating as unprocessed: {e}"
                )
                metadata = None

        previous = ProcessingRecord.from_metadata(metadata)
        process = should_process(blob_last_modified, metadata)

        if not process:
            reason = "unchanged since last processed"
        elif not metadata:
            reason = "no processing metadata"
        elif (
            parse_timestamp(_lookup(metadata, METADATA_PROCESSED_BLOB_LAST_MODIFIED))
            is None
        ):
            reason = "unreadable processing metadata"
        elif blob_last_modified is None:
            reason = "unknown last-modified"
        else:
            reason = "modified since last processed"

        logger.debug(f"{blob_name}: process={process} ({reason})")
        return GateDecision(
            blob_name=blob_name,
            should_process=process,
            reason=reason,
            blob_last_modified=blob_last_modified,
            previous=previous,
        )

    def mark_processed(
        self,
        blob_name: str,
        blob_last_modified: Optional[datetime],
        record_count: int,
    ) -> bool:
        """
        Persist the processing record for a blob.

        Existing metadata is replaced, not merged. Failures are logged and
        reported through the return value; they never raise.

        Returns:
            True if the metadata was written
        """
        if blob_last_modified is None:
            try:
                blob_last_modified = self._accessor.get_last_modified(blob_name)
            except Exception as e:
                logger.warning(
                    f"Not marking {blob_name} as processed, last-modified unavailable: {e}"
                )
                return False

        record = build_processed_metadata(blob_last_modified, record_count, self._clock())
        try:
            self._accessor.set_metadata(blob_name, record.to_metadata())
        except Exception as e:
            logger.warning(
                f"Failed to write processing metadata for {blob_name} "
                f"(it will be reprocessed next run): {e}"
            )
            return False

        logger.debug(f"Marked {blob_name} as processed ({record_count} records)")
        return True
