"""
Flow log parsing and denormalization.

Usage:
    from flow_log_pipeline.parsing import parse_flow_log, format_records

    records = parse_flow_log(blob_bytes, source="PT1H.json")
    print(format_records(records, fmt="jsonl"))
"""

from .exceptions import FlowLogParseError
from .flow_tuples import (
    FlatRecord,
    build_flat_record,
    denormalize,
    format_records,
    iter_flat_records,
    load_flow_log_document,
    parse_flow_log,
)

__all__ = [
    "FlatRecord",
    "FlowLogParseError",
    "build_flat_record",
    "denormalize",
    "format_records",
    "iter_flat_records",
    "load_flow_log_document",
    "parse_flow_log",
]
