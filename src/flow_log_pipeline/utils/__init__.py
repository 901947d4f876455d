"""Utility functions for the flow log pipeline."""

from .http_utils import (
    is_auth_failure_status,
    is_probe_ok_status,
    is_retryable_status,
    is_success_status,
)

__all__ = [
    # HTTP status classification
    "is_success_status",
    "is_retryable_status",
    "is_auth_failure_status",
    "is_probe_ok_status",
]
