"""
HTTP delivery of denormalized flow records.

Records are split into contiguous batches, each batch is serialized to a
compact JSON array (optionally gzip-compressed) and POSTed in a single
request. Transient failures are retried with exponential backoff; a batch
that ultimately fails is reported without stopping the remaining batches.

Wire contract:
    POST <endpoint>
    Content-Type: application/json
    Content-Encoding: gzip            (when compression is enabled)
    Authorization: Bearer <token>     (when a token is configured)
"""

import gzip
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import httpx

from ..config.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
)
from ..config.settings import DeliverySettings
from ..monitoring.retry_handler import RetryPolicy
from ..utils.http_utils import (
    is_auth_failure_status,
    is_probe_ok_status,
    is_retryable_status,
    is_success_status,
)
from .exceptions import DeliveryConfigError

logger = logging.getLogger(__name__)

# Transport failures worth retrying (connection problems and timeouts)
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class BatchOutcome:
    """Result of delivering one batch."""

    index: int
    record_count: int
    success: bool
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None
    retryable: bool = False
    cancelled: bool = False
    payload_bytes: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "record_count": self.record_count,
            "success": self.success,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "error": self.error,
            "retryable": self.retryable,
            "cancelled": self.cancelled,
            "payload_bytes": self.payload_bytes,
        }


@dataclass
class DeliveryReport:
    """Aggregate result of a deliver() call."""

    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def batches_total(self) -> int:
        return len(self.batches)

    @property
    def batches_succeeded(self) -> int:
        return sum(1 for b in self.batches if b.success)

    @property
    def batches_failed(self) -> int:
        return self.batches_total - self.batches_succeeded

    @property
    def records_total(self) -> int:
        return sum(b.record_count for b in self.batches)

    @property
    def records_delivered(self) -> int:
        return sum(b.record_count for b in self.batches if b.success)

    @property
    def records_failed(self) -> int:
        return self.records_total - self.records_delivered

    @property
    def success(self) -> bool:
        """True only if every batch was delivered."""
        return self.batches_failed == 0

    @property
    def partial(self) -> bool:
        """True when some, but not all, batches were delivered."""
        return 0 < self.batches_succeeded < self.batches_total

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "success": self.success,
            "batches_total": self.batches_total,
            "batches_succeeded": self.batches_succeeded,
            "batches_failed": self.batches_failed,
            "records_total": self.records_total,
            "records_delivered": self.records_delivered,
            "records_failed": self.records_failed,
            "batches": [b.to_dict() for b in self.batches],
        }


@dataclass
class ConnectivityResult:
    """Result of a pre-flight connectivity probe."""

    ok: bool
    reachable: bool
    authorized: Optional[bool] = None
    status_code: Optional[int] = None
    attempts: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "ok": self.ok,
            "reachable": self.reachable,
            "authorized": self.authorized,
            "status_code": self.status_code,
            "attempts": self.attempts,
            "error": self.error,
        }


# =============================================================================
# Batching and serialization
# =============================================================================


def _record_to_dict(record: Any) -> dict:
    """Serialize a FlatRecord (or plain dict) without None-valued fields."""
    data = record.to_dict() if hasattr(record, "to_dict") else dict(record)
    return {key: value for key, value in data.items() if value is not None}


def split_into_batches(records: Sequence[Any], batch_size: int) -> list[list[Any]]:
    """
    Split records into contiguous batches of at most batch_size.

    Raises:
        ValueError: If batch_size < 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(records[i : i + batch_size]) for i in range(0, len(records), batch_size)]


def serialize_batch(batch: Sequence[Any], compress: bool) -> tuple[bytes, dict[str, str]]:
    """
    Serialize a batch to a compact JSON array.

    Args:
        batch: Records to serialize
        compress: gzip the payload and set Content-Encoding

    Returns:
        Tuple of (payload bytes, request headers)
    """
    body = json.dumps(
        [_record_to_dict(record) for record in batch], separators=(",", ":")
    ).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    if compress:
        compressed = gzip.compress(body)
        headers["Content-Encoding"] = "gzip"
        logger.debug(
            f"Batch size: {len(batch)} records, uncompressed: {len(body)} bytes, "
            f"compressed: {len(compressed)} bytes "
            f"({len(compressed) / max(len(body), 1) * 100:.1f}%)"
        )
        return compressed, headers

    logger.debug(f"Batch size: {len(batch)} records, size: {len(body)} bytes")
    return body, headers


# =============================================================================
# Client
# =============================================================================


class BatchDeliveryClient:
    """
    Posts flow records to an HTTP collector in batches.

    Example:
        with BatchDeliveryClient("https://collector/api/logs", bearer_token=t) as client:
            if client.check_connectivity().ok:
                report = client.deliver(records)
                print(report.batches_failed, report.records_failed)
    """

    def __init__(
        self,
        endpoint: str,
        bearer_token: Optional[str] = None,
        compress: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the delivery client.

        Args:
            endpoint: Collector URL to POST batches to
            bearer_token: Optional token sent as Authorization: Bearer
            compress: gzip request bodies
            batch_size: Maximum records per request
            timeout_seconds: Per-request timeout
            max_retries: Retries per batch after the first attempt
                (ignored when retry_policy is given)
            retry_policy: Custom retry policy
            transport: Optional httpx transport (used by tests)

        Raises:
            DeliveryConfigError: If endpoint or batch_size is invalid
        """
        if not endpoint or not endpoint.strip():
            raise DeliveryConfigError("Endpoint URL cannot be empty", setting="endpoint")
        if batch_size < 1:
            raise DeliveryConfigError(
                f"batch_size must be >= 1, got {batch_size}", setting="batch_size"
            )
        if max_retries < 0:
            raise DeliveryConfigError(
                f"max_retries must be >= 0, got {max_retries}", setting="max_retries"
            )

        self.endpoint = endpoint.strip()
        self.compress = compress
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy(max_retries=max_retries)

        headers = {"Accept": "application/json"}
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"

        self._client = httpx.Client(
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

        logger.debug(
            f"Delivery client configured for {self.endpoint} "
            f"(batch_size={batch_size}, compress={compress}, "
            f"max_retries={self.retry_policy.max_retries})"
        )

    @classmethod
    def from_settings(
        cls, settings: DeliverySettings, **kwargs: Any
    ) -> "BatchDeliveryClient":
        """Build a client from DeliverySettings."""
        retry_policy = kwargs.pop(
            "retry_policy",
            RetryPolicy(
                max_retries=settings.max_retries,
                base_delay_seconds=settings.base_delay_seconds,
            ),
        )
        return cls(
            endpoint=settings.endpoint,
            bearer_token=settings.bearer_token,
            compress=settings.compress,
            batch_size=settings.batch_size,
            timeout_seconds=settings.timeout_seconds,
            max_retries=settings.max_retries,
            retry_policy=retry_policy,
            **kwargs,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "BatchDeliveryClient":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.close()

    @staticmethod
    def _retry_on_exception(error: Exception) -> bool:
        return isinstance(error, RETRYABLE_EXCEPTIONS)

    @staticmethod
    def _retry_on_response(response: httpx.Response) -> bool:
        return is_retryable_status(response.status_code)

    def deliver(
        self,
        records: Sequence[Any],
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> DeliveryReport:
        """
        Deliver records in batches.

        Args:
            records: FlatRecord objects (or dicts) in delivery order
            should_continue: Optional cancellation check, consulted before
                each batch; remaining batches are marked cancelled when it
                returns False

        Returns:
            DeliveryReport with per-batch outcomes
        """
        report = DeliveryReport()
        if not records:
            logger.debug("No records to post")
            return report

        batches = split_into_batches(records, self.batch_size)
        logger.info(
            f"Posting {len(records)} record(s) in {len(batches)} batch(es) "
            f"to: {self.endpoint}"
        )

        for index, batch in enumerate(batches):
            if should_continue is not None and not should_continue():
                logger.warning(
                    f"Delivery cancelled before batch {index + 1}/{len(batches)}"
                )
                for skipped_index in range(index, len(batches)):
                    report.batches.append(
                        BatchOutcome(
                            index=skipped_index,
                            record_count=len(batches[skipped_index]),
                            success=False,
                            error="cancelled",
                            cancelled=True,
                        )
                    )
                break

            report.batches.append(self._post_batch(index, batch))

        logger.info(
            f"Posting complete: {report.batches_succeeded} successful, "
            f"{report.batches_failed} failed "
            f"({report.records_failed} record(s) not delivered)"
        )
        return report

    def _post_batch(self, index: int, batch: list[Any]) -> BatchOutcome:
        """Post a single batch through the retry policy."""
        payload, headers = serialize_batch(batch, self.compress)

        retry = self.retry_policy.execute(
            lambda: self._client.post(self.endpoint, content=payload, headers=headers),
            retry_on_result=self._retry_on_response,
            retry_on_exception=self._retry_on_exception,
            description=f"Batch {index + 1}",
        )

        outcome = BatchOutcome(
            index=index,
            record_count=len(batch),
            success=False,
            attempts=retry.attempts,
            payload_bytes=len(payload),
        )

        response: Optional[httpx.Response] = retry.result
        if response is not None:
            outcome.status_code = response.status_code
            if is_success_status(response.status_code):
                outcome.success = True
                logger.debug(
                    f"Successfully posted batch {index + 1} "
                    f"(Status: {response.status_code})"
                )
                return outcome

            outcome.retryable = is_retryable_status(response.status_code)
            outcome.error = f"HTTP {response.status_code}: {response.text[:500]}"
        elif retry.last_error is not None:
            outcome.retryable = self._retry_on_exception(retry.last_error)
            outcome.error = f"{type(retry.last_error).__name__}: {retry.last_error}"

        logger.error(
            f"Failed to post batch {index + 1} ({len(batch)} records) "
            f"after {retry.attempts} attempt(s): {outcome.error}"
        )
        return outcome

    def check_connectivity(self) -> ConnectivityResult:
        """
        Probe the endpoint without sending any records.

        Sends a body-less OPTIONS request through the retry policy. The
        endpoint counts as usable when it answers 2xx or 405 (collectors
        commonly reject OPTIONS while accepting POST).

        Returns:
            ConnectivityResult describing reachability and authorization
        """
        logger.info(f"Testing connectivity to: {self.endpoint}")

        retry = self.retry_policy.execute(
            lambda: self._client.request("OPTIONS", self.endpoint),
            retry_on_result=self._retry_on_response,
            retry_on_exception=self._retry_on_exception,
            description="Connectivity test",
        )

        response: Optional[httpx.Response] = retry.result
        if response is None:
            error = retry.last_error
            message = f"{type(error).__name__}: {error}" if error else "no response"
            logger.error(f"Connectivity test failed: {message}")
            return ConnectivityResult(
                ok=False, reachable=False, attempts=retry.attempts, error=message
            )

        status = response.status_code
        authorized = not is_auth_failure_status(status)
        ok = is_probe_ok_status(status)
        logger.info(f"Connectivity response: {status}")

        return ConnectivityResult(
            ok=ok,
            reachable=True,
            authorized=authorized,
            status_code=status,
            attempts=retry.attempts,
            error=None if ok else f"HTTP {status}",
        )
