"""Incremental processing state stored in blob metadata."""

from .processing_gate import (
    BlobMetadataAccessor,
    GateDecision,
    ProcessingRecord,
    ProcessingStateGate,
    build_processed_metadata,
    parse_timestamp,
    should_process,
)

__all__ = [
    "BlobMetadataAccessor",
    "GateDecision",
    "ProcessingRecord",
    "ProcessingStateGate",
    "build_processed_metadata",
    "parse_timestamp",
    "should_process",
]
