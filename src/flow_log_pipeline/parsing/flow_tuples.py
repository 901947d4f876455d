"""
VNet flow log denormalization.

Azure writes flow logs as one JSON document per blob:

    records[] -> flowRecords.flows[] (rule) -> flowGroups[] (mac)
              -> flowTuples[] ("csv,string,...")

Each flow tuple becomes one flat record carrying the metadata of every
enclosing level. Tuple layout (positional, comma-delimited):

    Index  Field               Version
    0      startTime           1+
    1      sourceAddress       1+
    2      destinationAddress  1+
    3      sourcePort          1+
    4      destinationPort     1+
    5      transportProtocol   1+
    6      deviceDirection     1+
    7      deviceAction        1+
    8      flowState           2+
    9      packetsStoD         2+
    10     bytesStoD           2+
    11     packetsDtoS         2+
    12     bytesDtoS           2+

Denormalization is total: any JSON value is accepted and missing or
malformed collections simply contribute no records.
"""

import gzip
import json
import logging
import zlib
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional, Union

from .exceptions import FlowLogParseError

logger = logging.getLogger(__name__)

DEFAULT_VERSION = 1

# Canonical value for empty packet/byte counters
ZERO_COUNT = "0"

_GZIP_MAGIC = b"\x1f\x8b"


@dataclass(frozen=True)
class FlatRecord:
    """
    One denormalized flow observation.

    Version 2+ fields are None for version 1 records and are omitted from
    the serialized form.
    """

    # Record-level metadata
    time: str
    category: str
    operation_name: str
    resource_id: str
    version: int

    # Enclosing rule and NIC
    nsg_rule_name: str
    mac: str

    # Tuple fields (all versions)
    start_time: str
    source_address: str
    destination_address: str
    source_port: str
    destination_port: str
    transport_protocol: str
    device_direction: str
    device_action: str

    # Tuple fields (version 2+)
    flow_state: Optional[str] = None
    packets_s_to_d: Optional[str] = None
    bytes_s_to_d: Optional[str] = None
    packets_d_to_s: Optional[str] = None
    bytes_d_to_s: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to the output JSON shape, leaving out unset fields."""
        result = {
            "time": self.time,
            "category": self.category,
            "operationName": self.operation_name,
            "resourceId": self.resource_id,
            "version": self.version,
            "nsgRuleName": self.nsg_rule_name,
            "mac": self.mac,
            "startTime": self.start_time,
            "sourceAddress": self.source_address,
            "destinationAddress": self.destination_address,
            "sourcePort": self.source_port,
            "destinationPort": self.destination_port,
            "transportProtocol": self.transport_protocol,
            "deviceDirection": self.device_direction,
            "deviceAction": self.device_action,
            "flowState": self.flow_state,
            "packetsStoD": self.packets_s_to_d,
            "bytesStoD": self.bytes_s_to_d,
            "packetsDtoS": self.packets_d_to_s,
            "bytesDtoS": self.bytes_d_to_s,
        }
        return {key: value for key, value in result.items() if value is not None}


# =============================================================================
# Tolerant accessors
# =============================================================================


def _get(container: Any, key: str) -> Any:
    """
    Look up a key in a mapping, falling back to a case-insensitive match.

    Returns None for non-mappings and missing keys.
    """
    if not isinstance(container, dict):
        return None
    if key in container:
        return container[key]
    lowered = key.lower()
    for candidate, value in container.items():
        if isinstance(candidate, str) and candidate.lower() == lowered:
            return value
    return None


def _get_list(container: Any, key: str) -> list:
    """Return the list stored under key, or an empty list."""
    value = _get(container, key)
    return value if isinstance(value, list) else []


def _get_str(container: Any, key: str) -> str:
    """Return the value under key as a string ("" when missing)."""
    value = _get(container, key)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _get_version(record: Any) -> int:
    """Read properties.Version, defaulting to 1 when absent or not an integer."""
    value = _get(_get(record, "properties"), "Version")
    if value is None or isinstance(value, bool):
        return DEFAULT_VERSION
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_VERSION


def _field(parts: list[str], index: int) -> str:
    """Positional field, empty string past the end of the tuple."""
    return parts[index] if index < len(parts) else ""


def _count(parts: list[str], index: int) -> str:
    """Positional packet/byte counter, "0" when empty or missing."""
    return _field(parts, index) or ZERO_COUNT


# =============================================================================
# Denormalization
# =============================================================================


def build_flat_record(
    record: Any,
    rule_name: str,
    mac: str,
    flow_tuple: Any,
    version: int,
) -> FlatRecord:
    """
    Build one flat record from a single flow tuple.

    Args:
        record: The enclosing log record (for time/category/...)
        rule_name: Name of the NSG rule the tuple was grouped under
        mac: MAC address of the NIC the tuple was observed on
        flow_tuple: Comma-delimited tuple string
        version: Schema version of the enclosing record

    Returns:
        FlatRecord with version 2+ fields populated only when version >= 2
    """
    if flow_tuple is None:
        flow_tuple = ""
    elif not isinstance(flow_tuple, str):
        flow_tuple = str(flow_tuple)

    parts = flow_tuple.split(",")

    v2_fields = {}
    if version >= 2:
        v2_fields = {
            "flow_state": _field(parts, 8),
            "packets_s_to_d": _count(parts, 9),
            "bytes_s_to_d": _count(parts, 10),
            "packets_d_to_s": _count(parts, 11),
            "bytes_d_to_s": _count(parts, 12),
        }

    return FlatRecord(
        time=_get_str(record, "time"),
        category=_get_str(record, "category"),
        operation_name=_get_str(record, "operationName"),
        resource_id=_get_str(record, "resourceId"),
        version=version,
        nsg_rule_name=rule_name,
        mac=mac,
        start_time=_field(parts, 0),
        source_address=_field(parts, 1),
        destination_address=_field(parts, 2),
        source_port=_field(parts, 3),
        destination_port=_field(parts, 4),
        transport_protocol=_field(parts, 5),
        device_direction=_field(parts, 6),
        device_action=_field(parts, 7),
        **v2_fields,
    )


def iter_flat_records(document: Any) -> Iterator[FlatRecord]:
    """
    Yield flat records in document order.

    Order is records -> flows -> flowGroups -> flowTuples, exactly as they
    appear in the input.
    """
    for record in _get_list(document, "records"):
        if not isinstance(record, dict):
            continue

        flow_section = _get(record, "flowRecords")
        if flow_section is None:
            continue

        # Version is fixed per log record
        version = _get_version(record)

        for flow in _get_list(flow_section, "flows"):
            rule_name = _get_str(flow, "rule")
            for group in _get_list(flow, "flowGroups"):
                mac = _get_str(group, "mac")
                for flow_tuple in _get_list(group, "flowTuples"):
                    yield build_flat_record(record, rule_name, mac, flow_tuple, version)


def denormalize(document: Any) -> list[FlatRecord]:
    """
    Flatten a flow log document into one record per flow tuple.

    Args:
        document: Parsed JSON document ({"records": [...]})

    Returns:
        List of FlatRecord in input traversal order (empty for documents
        without records)
    """
    return list(iter_flat_records(document))


# =============================================================================
# Blob content
# =============================================================================


def load_flow_log_document(
    content: Union[bytes, str], source: Optional[str] = None
) -> Any:
    """
    Decode raw blob content into a JSON document.

    Gzip-compressed content is detected by its magic bytes; a UTF-8 BOM is
    tolerated.

    Raises:
        FlowLogParseError: If the content is not valid JSON
    """
    if isinstance(content, bytes):
        try:
            if content[:2] == _GZIP_MAGIC:
                content = gzip.decompress(content)
            text = content.decode("utf-8-sig")
        except (OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            raise FlowLogParseError(f"Cannot decode flow log content: {e}", source) from e
    else:
        text = content.lstrip("\ufeff")

    if not text.strip():
        raise FlowLogParseError("Flow log content is empty", source)

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise FlowLogParseError(f"Invalid JSON in flow log: {e}", source) from e


def parse_flow_log(
    content: Union[bytes, str], source: Optional[str] = None
) -> list[FlatRecord]:
    """
    Parse raw flow log content and return denormalized records.

    Args:
        content: Blob bytes or text
        source: Optional blob name for error messages

    Returns:
        List of FlatRecord

    Raises:
        FlowLogParseError: If the content is not valid JSON
    """
    document = load_flow_log_document(content, source)
    records = denormalize(document)
    logger.debug(f"Parsed {len(records)} flow record(s) from {source or 'content'}")
    return records


# =============================================================================
# Output formatting
# =============================================================================


def format_records(records: Iterable[FlatRecord], fmt: str = "json") -> str:
    """
    Format records for file or stdout output.

    Args:
        records: Records to format
        fmt: "json" for an indented JSON array, "jsonl" for one compact
             object per line

    Returns:
        Formatted text (no trailing newline)
    """
    if fmt == "jsonl":
        return "\n".join(
            json.dumps(record.to_dict(), separators=(",", ":")) for record in records
        )
    if fmt == "json":
        return json.dumps([record.to_dict() for record in records], indent=2)
    raise ValueError(f"Unsupported output format: {fmt}. Use 'json' or 'jsonl'")
