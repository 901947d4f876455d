"""Monitoring module for pipeline resilience."""

from .retry_handler import RetryPolicy, RetryResult, default_jitter

__all__ = [
    "RetryPolicy",
    "RetryResult",
    "default_jitter",
]
