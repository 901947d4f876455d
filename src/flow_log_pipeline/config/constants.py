"""
Constants for flow log parsing, processing state and delivery.
"""

# =============================================================================
# Source Defaults
# =============================================================================

# Container Azure Network Watcher writes VNet flow logs into
DEFAULT_CONTAINER = "insights-logs-flowlogflowevent"

# Storage account naming rules (3-24 lowercase letters and digits)
STORAGE_ACCOUNT_MIN_LENGTH = 3
STORAGE_ACCOUNT_MAX_LENGTH = 24

# =============================================================================
# Processing State (blob metadata)
# =============================================================================

# Azure blob metadata keys must be valid C# identifiers
METADATA_LAST_PROCESSED = "lastProcessed"
METADATA_PROCESSED_BLOB_LAST_MODIFIED = "processedBlobLastModified"
METADATA_RECORD_COUNT = "recordCount"
METADATA_PROCESSED_BY = "processedBy"

PROCESSED_BY_TAG = "flow-log-pipeline"

# =============================================================================
# Delivery Defaults
# =============================================================================

DEFAULT_BATCH_SIZE = 1000
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SECONDS = 60.0

# =============================================================================
# Output
# =============================================================================

OUTPUT_FORMATS = ("json", "jsonl")

# Base fields present on every denormalized record
BASE_OUTPUT_FIELDS = [
    "time",
    "category",
    "operationName",
    "resourceId",
    "version",
    "nsgRuleName",
    "mac",
    "startTime",
    "sourceAddress",
    "destinationAddress",
    "sourcePort",
    "destinationPort",
    "transportProtocol",
    "deviceDirection",
    "deviceAction",
]

# Fields only emitted for schema version 2 and later
V2_OUTPUT_FIELDS = [
    "flowState",
    "packetsStoD",
    "bytesStoD",
    "packetsDtoS",
    "bytesDtoS",
]

OUTPUT_FIELDS = BASE_OUTPUT_FIELDS + V2_OUTPUT_FIELDS
