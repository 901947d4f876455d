"""
Flow log pipeline driver.

Wires blob enumeration, the processing state gate, the denormalizer and
the record sinks (file/stdout writer and HTTP delivery) together, one
storage account at a time.

Per blob:
    1. Gate check (skip blobs unchanged since their last processing)
    2. Download and denormalize
    3. Hand records to the sinks (merged across accounts or per account)
    4. Mark processed, only for blobs whose records reached every sink

Failures are captured as outcomes; one bad blob or account never stops
the run.
"""

import logging
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, TextIO

from ..config.settings import Settings, SourceSettings
from ..delivery.http_client import BatchDeliveryClient, DeliveryReport
from ..parsing.exceptions import FlowLogParseError
from ..parsing.flow_tuples import FlatRecord, format_records, parse_flow_log
from ..state.processing_gate import ProcessingStateGate
from ..storage.base import BlobItem, BlobStore, ContainerMetadataAccessor, StorageError
from ..storage.factory import get_blob_store

logger = logging.getLogger(__name__)

STATUS_PROCESSED = "processed"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

StoreFactory = Callable[[str], BlobStore]


def setup_logging(level: int = logging.INFO) -> None:
    """
    Configure root logging on stderr.

    stdout is left alone so records can be piped from it.
    """
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    # The SDKs log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("azure").setLevel(logging.WARNING)


def make_store_factory(source: SourceSettings) -> StoreFactory:
    """
    Build a store factory for the configured source.

    The local store reads ``<local_root>/<account>/<container>/...``.
    """

    def factory(account: str) -> BlobStore:
        if source.store_type == "local":
            return get_blob_store(
                "local",
                root=Path(source.local_root) / account,
                account_name=account,
            )
        return get_blob_store(source.store_type, account_name=account)

    return factory


# =============================================================================
# Result types
# =============================================================================


@dataclass
class BlobOutcome:
    """What happened to one blob."""

    account: str
    blob_name: str
    status: str
    reason: Optional[str] = None
    record_count: int = 0
    error: Optional[str] = None
    marked: bool = False
    last_modified: Optional[datetime] = None
    records: list[FlatRecord] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "account": self.account,
            "blob_name": self.blob_name,
            "status": self.status,
            "reason": self.reason,
            "record_count": self.record_count,
            "error": self.error,
            "marked": self.marked,
        }


@dataclass
class AccountResult:
    """Outcomes for one storage account."""

    account: str
    blobs: list[BlobOutcome] = field(default_factory=list)
    listed: list[BlobItem] = field(default_factory=list)
    error: Optional[str] = None
    output_path: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def records(self) -> list[FlatRecord]:
        """Records of processed blobs, in listing order."""
        records = []
        for outcome in self.blobs:
            if outcome.status == STATUS_PROCESSED:
                records.extend(outcome.records)
        return records

    def to_dict(self) -> dict:
        return {
            "account": self.account,
            "error": self.error,
            "output_path": self.output_path,
            "listed": [
                {
                    "name": item.name,
                    "last_modified": (
                        item.last_modified.isoformat() if item.last_modified else None
                    ),
                    "size": item.size,
                }
                for item in self.listed
            ],
            "blobs": [outcome.to_dict() for outcome in self.blobs],
        }


@dataclass
class PipelineResult:
    """Result of a pipeline run."""

    accounts: list[AccountResult] = field(default_factory=list)
    delivery_reports: list[DeliveryReport] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    list_only: bool = False
    duration_seconds: float = 0.0

    def _blobs(self, status: str) -> list[BlobOutcome]:
        return [
            outcome
            for account in self.accounts
            for outcome in account.blobs
            if outcome.status == status
        ]

    @property
    def blobs_processed(self) -> int:
        return len(self._blobs(STATUS_PROCESSED))

    @property
    def blobs_skipped(self) -> int:
        return len(self._blobs(STATUS_SKIPPED))

    @property
    def blobs_failed(self) -> int:
        return len(self._blobs(STATUS_FAILED))

    @property
    def blobs_marked(self) -> int:
        return sum(1 for outcome in self._blobs(STATUS_PROCESSED) if outcome.marked)

    @property
    def records(self) -> list[FlatRecord]:
        """All produced records, accounts in input order."""
        records = []
        for account in self.accounts:
            records.extend(account.records)
        return records

    @property
    def total_records(self) -> int:
        return sum(
            outcome.record_count for outcome in self._blobs(STATUS_PROCESSED)
        )

    @property
    def records_delivered(self) -> int:
        return sum(report.records_delivered for report in self.delivery_reports)

    @property
    def records_failed_delivery(self) -> int:
        return sum(report.records_failed for report in self.delivery_reports)

    @property
    def delivery_success(self) -> bool:
        return all(report.success for report in self.delivery_reports)

    @property
    def exit_code(self) -> int:
        """
        0 unless the run failed as a whole.

        Total failure: every account failed, nothing was processed while
        something failed, or delivery was attempted and delivered nothing.
        """
        if self.accounts and all(account.failed for account in self.accounts):
            return 1
        if self.list_only:
            return 0
        if self.blobs_failed and not self.blobs_processed:
            return 1
        attempted = [r for r in self.delivery_reports if r.batches_total]
        if attempted and not any(r.records_delivered for r in attempted):
            return 1
        return 0

    def to_dict(self) -> dict:
        """Convert to dictionary for logging/serialization."""
        return {
            "list_only": self.list_only,
            "duration_seconds": round(self.duration_seconds, 3),
            "blobs_processed": self.blobs_processed,
            "blobs_skipped": self.blobs_skipped,
            "blobs_failed": self.blobs_failed,
            "blobs_marked": self.blobs_marked,
            "total_records": self.total_records,
            "records_delivered": self.records_delivered,
            "records_failed_delivery": self.records_failed_delivery,
            "delivery": [report.to_dict() for report in self.delivery_reports],
            "accounts": [account.to_dict() for account in self.accounts],
            "errors": self.errors,
            "exit_code": self.exit_code,
        }


# =============================================================================
# Pipeline
# =============================================================================


class FlowLogPipeline:
    """
    Runs flow log processing across storage accounts.

    Stores are created per account through ``store_factory`` and closed
    when the account is done. The delivery client, when not supplied, is
    created from ``settings.delivery`` if an endpoint is configured.
    """

    def __init__(
        self,
        settings: Settings,
        store_factory: Optional[StoreFactory] = None,
        delivery_client: Optional[BatchDeliveryClient] = None,
        stdout: Optional[TextIO] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Validated settings
            store_factory: Returns a BlobStore for an account name
                (default: built from settings.source)
            delivery_client: Pre-built delivery client (optional)
            stdout: Stream for record output when no file is configured
        """
        self.settings = settings
        self._store_factory = store_factory or make_store_factory(settings.source)
        self._stdout = stdout
        self._cancelled = threading.Event()

        if delivery_client is not None:
            self._delivery = delivery_client
            self._owns_delivery = False
        elif settings.delivery.enabled:
            self._delivery = BatchDeliveryClient.from_settings(settings.delivery)
            self._owns_delivery = True
        else:
            self._delivery = None
            self._owns_delivery = False

    def close(self) -> None:
        """Close the delivery client if this pipeline created it."""
        if self._owns_delivery and self._delivery is not None:
            self._delivery.close()

    def __enter__(self) -> "FlowLogPipeline":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def cancel(self) -> None:
        """Stop before the next blob or batch; work in flight completes."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _should_continue(self) -> bool:
        return not self._cancelled.is_set()

    def run(self, accounts: list[str], list_only: bool = False) -> PipelineResult:
        """
        Process every account in order.

        Args:
            accounts: Storage account names
            list_only: Only list blobs, without reading or marking them

        Returns:
            PipelineResult with per-account and per-blob outcomes
        """
        started = time.monotonic()
        result = PipelineResult(list_only=list_only)
        processing = self.settings.processing

        logger.info(
            f"Starting flow log pipeline for {len(accounts)} account(s) "
            f"(container={self.settings.source.container}, "
            f"per_source={processing.per_source}, list_only={list_only})"
        )

        # Stores stay open until marking is done
        gates: dict[str, ProcessingStateGate] = {}
        stores: list[BlobStore] = []
        try:
            for account in accounts:
                if self.cancelled:
                    logger.warning(f"Run cancelled, not starting account {account}")
                    break
                account_result = self._run_account(account, list_only, stores, gates)
                result.accounts.append(account_result)
                if account_result.error:
                    result.errors.append(f"{account}: {account_result.error}")
                    continue
                if not list_only and processing.per_source:
                    self._emit(account_result.blobs, result, gates, account_result)

            if not list_only and not processing.per_source:
                blobs = [
                    outcome
                    for account_result in result.accounts
                    for outcome in account_result.blobs
                ]
                self._emit(blobs, result, gates)
        finally:
            for store in stores:
                store.close()

        for account_result in result.accounts:
            for outcome in account_result.blobs:
                if outcome.status == STATUS_FAILED:
                    result.errors.append(
                        f"{outcome.account}/{outcome.blob_name}: {outcome.error}"
                    )

        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"Pipeline finished in {result.duration_seconds:.1f}s: "
            f"{result.blobs_processed} processed, {result.blobs_skipped} skipped, "
            f"{result.blobs_failed} failed, {result.total_records} record(s)"
        )
        return result

    # -------------------------------------------------------------------------
    # Per account
    # -------------------------------------------------------------------------

    def _run_account(
        self,
        account: str,
        list_only: bool,
        stores: list[BlobStore],
        gates: dict[str, ProcessingStateGate],
    ) -> AccountResult:
        source = self.settings.source
        processing = self.settings.processing
        account_result = AccountResult(account=account)

        logger.info(f"Processing storage account: {account}")
        try:
            store = self._store_factory(account)
        except StorageError as e:
            logger.error(f"Could not open storage account {account}: {e}")
            account_result.error = str(e)
            return account_result
        stores.append(store)

        try:
            blobs = store.list_blobs(source.container, source.prefix)
        except StorageError as e:
            logger.error(f"Failed to list blobs in {account}/{source.container}: {e}")
            account_result.error = str(e)
            return account_result

        if processing.limit is not None:
            blobs = blobs[: processing.limit]
        logger.info(f"Found {len(blobs)} blob(s) in {account}/{source.container}")

        if list_only:
            account_result.listed = blobs
            return account_result

        gate = None
        if processing.track_state:
            gate = ProcessingStateGate(
                ContainerMetadataAccessor(store, source.container),
                force_reprocess=processing.force_reprocess,
            )
            gates[account] = gate

        outcomes = self._process_blobs(store, gate, account, blobs)
        # None marks blobs never started because of cancellation
        account_result.blobs = [outcome for outcome in outcomes if outcome is not None]
        return account_result

    def _process_blobs(
        self,
        store: BlobStore,
        gate: Optional[ProcessingStateGate],
        account: str,
        blobs: list[BlobItem],
    ) -> list[Optional[BlobOutcome]]:
        """Process blobs, concurrently when max_workers > 1; keeps listing order."""

        def work(blob: BlobItem) -> Optional[BlobOutcome]:
            if self.cancelled:
                return None
            return self._process_blob(store, gate, account, blob)

        max_workers = self.settings.processing.max_workers
        if max_workers <= 1 or len(blobs) <= 1:
            return [work(blob) for blob in blobs]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(work, blobs))

    def _process_blob(
        self,
        store: BlobStore,
        gate: Optional[ProcessingStateGate],
        account: str,
        blob: BlobItem,
    ) -> BlobOutcome:
        container = self.settings.source.container
        outcome = BlobOutcome(
            account=account,
            blob_name=blob.name,
            status=STATUS_FAILED,
            last_modified=blob.last_modified,
        )

        if gate is not None:
            decision = gate.check(blob.name, blob.last_modified, blob.metadata)
            outcome.last_modified = decision.blob_last_modified
            outcome.reason = decision.reason
            if not decision.should_process:
                logger.info(f"Skipping {account}/{blob.name}: {decision.reason}")
                outcome.status = STATUS_SKIPPED
                return outcome

        logger.info(f"Processing: {account}/{blob.name}")
        try:
            content = store.read_blob(container, blob.name)
            records = parse_flow_log(content, source=blob.name)
        except (StorageError, FlowLogParseError) as e:
            logger.error(f"Error processing blob {account}/{blob.name}: {e}")
            outcome.error = str(e)
            return outcome
        except Exception as e:
            # One blob never aborts the account
            logger.exception(f"Unexpected error processing blob {account}/{blob.name}")
            outcome.error = f"{type(e).__name__}: {e}"
            return outcome

        outcome.status = STATUS_PROCESSED
        outcome.records = records
        outcome.record_count = len(records)
        logger.debug(f"{account}/{blob.name}: {len(records)} record(s)")
        return outcome

    # -------------------------------------------------------------------------
    # Sinks and marking
    # -------------------------------------------------------------------------

    def _emit(
        self,
        blobs: list[BlobOutcome],
        result: PipelineResult,
        gates: dict[str, ProcessingStateGate],
        account: Optional[AccountResult] = None,
    ) -> None:
        """
        Send processed blobs' records to the sinks, then mark the blobs
        whose records reached all of them.
        """
        processed = [outcome for outcome in blobs if outcome.status == STATUS_PROCESSED]
        if not processed:
            return

        records = []
        for outcome in processed:
            records.extend(outcome.records)

        written = self._write_output(records, result, account)

        delivered = [True] * len(processed)
        if self._delivery is not None:
            report = self._delivery.deliver(records, should_continue=self._should_continue)
            result.delivery_reports.append(report)
            delivered = _delivered_blobs(processed, report, self._delivery.batch_size)

        for outcome, ok in zip(processed, delivered):
            gate = gates.get(outcome.account)
            if gate is None:
                continue
            if not (written and ok):
                logger.warning(
                    f"Not marking {outcome.account}/{outcome.blob_name} as processed: "
                    "records did not reach every sink"
                )
                continue
            outcome.marked = gate.mark_processed(
                outcome.blob_name, outcome.last_modified, outcome.record_count
            )

    def _output_target(self, account: Optional[AccountResult]) -> Optional[Path]:
        output_path = self.settings.processing.output_path
        if not output_path:
            return None
        path = Path(output_path)
        if account is None:
            return path
        return path.with_name(f"{account.account}-{path.stem}{path.suffix}")

    def _write_output(
        self,
        records: list[FlatRecord],
        result: PipelineResult,
        account: Optional[AccountResult] = None,
    ) -> bool:
        """
        Write records to the output file, or to stdout when neither a file
        nor a delivery endpoint is configured.

        Returns:
            True if the write succeeded or no write was needed
        """
        fmt = self.settings.processing.output_format
        target = self._output_target(account)

        if target is None:
            if self._delivery is not None:
                return True
            stream = self._stdout or sys.stdout
            stream.write(format_records(records, fmt))
            stream.write("\n")
            stream.flush()
            return True

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(format_records(records, fmt) + "\n", encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write output to {target}: {e}")
            result.errors.append(f"output {target}: {e}")
            return False

        if account is not None:
            account.output_path = str(target)
        logger.info(f"Output written to: {target} ({len(records)} record(s))")
        return True


def _delivered_blobs(
    processed: list[BlobOutcome], report: DeliveryReport, batch_size: int
) -> list[bool]:
    """
    Map batch outcomes back to blobs.

    A blob counts as delivered when every batch holding any of its records
    succeeded. Blobs without records are trivially delivered.
    """
    succeeded = {outcome.index for outcome in report.batches if outcome.success}
    delivered = []
    offset = 0
    for outcome in processed:
        count = outcome.record_count
        if count == 0:
            delivered.append(True)
            continue
        first = offset // batch_size
        last = (offset + count - 1) // batch_size
        delivered.append(all(index in succeeded for index in range(first, last + 1)))
        offset += count
    return delivered
