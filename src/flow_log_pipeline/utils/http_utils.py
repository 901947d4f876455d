"""
HTTP status helpers for collector delivery.

A batch POST is accepted on any 2xx. Failures split into retryable
(408, 429, 5xx) and terminal (every other 4xx). The connectivity probe
sends OPTIONS, which many ingest endpoints answer with 405.
"""

from typing import Optional

RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})
AUTH_FAILURE_STATUSES = frozenset({401, 403})
PROBE_ACCEPTED_STATUSES = frozenset({405})


def is_success_status(status_code: Optional[int]) -> bool:
    """True for 2xx responses."""
    return status_code is not None and 200 <= status_code < 300


def is_retryable_status(status_code: Optional[int]) -> bool:
    """
    Check if a failed response is transient and worth retrying.

    Args:
        status_code: HTTP status code of the response

    Returns:
        True for 408 Request Timeout, 429 Too Many Requests and any 5xx
    """
    if status_code is None:
        return False
    return status_code in RETRYABLE_CLIENT_STATUSES or 500 <= status_code < 600


def is_auth_failure_status(status_code: Optional[int]) -> bool:
    """True when the collector rejected the credentials."""
    return status_code in AUTH_FAILURE_STATUSES


def is_probe_ok_status(status_code: Optional[int]) -> bool:
    """
    Check a connectivity probe response.

    The endpoint is usable when it answers 2xx, or 405 because it only
    accepts POST.
    """
    return is_success_status(status_code) or status_code in PROBE_ACCEPTED_STATUSES
