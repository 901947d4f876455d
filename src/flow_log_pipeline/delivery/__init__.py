"""
HTTP delivery of flow records to a remote collector.

Usage:
    from flow_log_pipeline.delivery import BatchDeliveryClient

    with BatchDeliveryClient(endpoint, bearer_token=token) as client:
        report = client.deliver(records)
"""

from .exceptions import DeliveryConfigError, DeliveryError
from .http_client import (
    BatchDeliveryClient,
    BatchOutcome,
    ConnectivityResult,
    DeliveryReport,
    serialize_batch,
    split_into_batches,
)

__all__ = [
    "BatchDeliveryClient",
    "BatchOutcome",
    "ConnectivityResult",
    "DeliveryReport",
    "DeliveryError",
    "DeliveryConfigError",
    "serialize_batch",
    "split_into_batches",
]
