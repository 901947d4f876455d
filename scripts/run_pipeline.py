#!/usr/bin/env python3
"""
CLI script to run the flow log pipeline.

Usage:
    # Process one account, print records to stdout
    python scripts/run_pipeline.py -s flowlogs01

    # Several accounts from a file, one JSON Lines file per account
    python scripts/run_pipeline.py --storage-accounts-file accounts.txt \\
        -o output/flows.jsonl -f jsonl --per-source

    # Forward records to a collector
    python scripts/run_pipeline.py -s flowlogs01 \\
        --endpoint https://collector.example.com/ingest --bearer-token $TOKEN

    # Pre-flight check of the collector
    python scripts/run_pipeline.py --endpoint https://collector.example.com/ingest \\
        --test-connectivity

    # Only list blobs
    python scripts/run_pipeline.py -s flowlogs01 --list-only
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from flow_log_pipeline.config import (
    ConfigurationError,
    Settings,
    load_accounts_from_env,
    load_accounts_from_file,
    load_settings,
    parse_storage_accounts,
    validate_storage_accounts,
)
from flow_log_pipeline.config.constants import OUTPUT_FORMATS
from flow_log_pipeline.delivery import BatchDeliveryClient, DeliveryConfigError
from flow_log_pipeline.pipeline import FlowLogPipeline, PipelineResult, setup_logging

logger = logging.getLogger(__name__)


def _eprint(*args) -> None:
    """Print to stderr; stdout carries records."""
    print(*args, file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Flatten Azure VNet flow logs and forward them to a collector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Process one account
  python scripts/run_pipeline.py -s flowlogs01

  # Merge several accounts into one file
  python scripts/run_pipeline.py -s flowlogs01 -s flowlogs02 -o flows.json

  # Reprocess everything and post to a collector
  python scripts/run_pipeline.py -s flowlogs01 --force-reprocess \\
      --endpoint https://collector.example.com/ingest
        """,
    )

    # Source selection
    source = parser.add_argument_group("source")
    source.add_argument(
        "--storage-account",
        "-s",
        action="append",
        default=[],
        help="Storage account name (repeatable, comma-separated allowed)",
    )
    source.add_argument(
        "--storage-accounts-file",
        type=Path,
        help="File with storage account names (one per line or comma-separated)",
    )
    source.add_argument(
        "--storage-accounts-env",
        metavar="VARIABLE",
        help="Environment variable holding storage account names",
    )
    source.add_argument(
        "--container",
        "-c",
        help="Blob container (default: insights-logs-flowlogflowevent)",
    )
    source.add_argument("--prefix", "-p", help="Blob name prefix filter")
    source.add_argument(
        "--limit",
        "-l",
        type=int,
        help="Maximum number of blobs per account",
    )
    source.add_argument(
        "--local-root",
        type=Path,
        help="Read from <local-root>/<account>/<container>/ instead of Azure",
    )

    # Output
    output = parser.add_argument_group("output")
    output.add_argument(
        "--output",
        "-o",
        help="Output file path (prints to stdout if not specified)",
    )
    output.add_argument(
        "--format",
        "-f",
        choices=OUTPUT_FORMATS,
        help="Output format: json (default) or jsonl (JSON Lines)",
    )
    output.add_argument(
        "--per-source",
        action="store_true",
        help="Write and deliver each storage account separately",
    )
    output.add_argument(
        "--list-only",
        action="store_true",
        help="Only list available blobs without processing",
    )
    output.add_argument(
        "--force-reprocess",
        action="store_true",
        help="Process blobs even if they are marked as processed",
    )
    output.add_argument(
        "--workers",
        type=int,
        help="Blobs processed concurrently per account (default: 1)",
    )

    # Delivery
    delivery = parser.add_argument_group("delivery")
    delivery.add_argument("--endpoint", help="HTTP endpoint to POST records to")
    delivery.add_argument("--bearer-token", help="Bearer token for the endpoint")
    delivery.add_argument(
        "--no-compression",
        action="store_true",
        help="Send uncompressed payloads",
    )
    delivery.add_argument("--batch-size", type=int, help="Records per request")
    delivery.add_argument("--max-retries", type=int, help="Retries per batch")
    delivery.add_argument("--timeout", type=int, help="Request timeout in seconds")
    delivery.add_argument(
        "--test-connectivity",
        action="store_true",
        help="Probe the endpoint and exit",
    )

    # Optional
    parser.add_argument("--config", help="YAML config file (.enc.yaml is SOPS-decrypted)")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Override loaded settings with command line values."""
    source = settings.source
    processing = settings.processing
    delivery = settings.delivery

    if args.container:
        source.container = args.container
    if args.prefix:
        source.prefix = args.prefix
    if args.local_root:
        source.store_type = "local"
        source.local_root = str(args.local_root)

    if args.limit is not None:
        processing.limit = args.limit
    if args.output:
        processing.output_path = args.output
    if args.format:
        processing.output_format = args.format
    if args.per_source:
        processing.per_source = True
    if args.force_reprocess:
        processing.force_reprocess = True
    if args.workers is not None:
        processing.max_workers = args.workers

    if args.endpoint:
        delivery.endpoint = args.endpoint
    if args.bearer_token:
        delivery.bearer_token = args.bearer_token
    if args.no_compression:
        delivery.compress = False
    if args.batch_size is not None:
        delivery.batch_size = args.batch_size
    if args.max_retries is not None:
        delivery.max_retries = args.max_retries
    if args.timeout is not None:
        delivery.timeout_seconds = args.timeout

    return settings


def resolve_accounts(args: argparse.Namespace, settings: Settings) -> list[str]:
    """
    Collect storage accounts from the command line, a file, an environment
    variable and the settings, in that order, without duplicates.

    Raises:
        ConfigurationError: If no valid account name is found
    """
    accounts: list[str] = []
    if args.storage_account:
        accounts.extend(parse_storage_accounts("\n".join(args.storage_account)))
    if args.storage_accounts_file:
        accounts.extend(load_accounts_from_file(args.storage_accounts_file))
    if args.storage_accounts_env:
        accounts.extend(load_accounts_from_env(args.storage_accounts_env))
    if not accounts:
        accounts.extend(settings.source.storage_accounts)

    if not accounts:
        raise ConfigurationError(
            "No storage accounts given. Use --storage-account, "
            "--storage-accounts-file or --storage-accounts-env"
        )

    return validate_storage_accounts(list(dict.fromkeys(accounts)))


def run_connectivity_check(settings: Settings) -> int:
    """Probe the delivery endpoint and report the result."""
    if not settings.delivery.enabled:
        logger.error("--test-connectivity requires --endpoint")
        return 1

    with BatchDeliveryClient.from_settings(settings.delivery) as client:
        result = client.check_connectivity()

    _eprint()
    _eprint("🔌 Connectivity Test")
    _eprint("=" * 50)
    _eprint(f"  Endpoint: {settings.delivery.endpoint}")
    _eprint(f"  Reachable: {'yes' if result.reachable else 'no'}")
    if result.status_code is not None:
        _eprint(f"  Status: {result.status_code}")
    if result.authorized is False:
        _eprint("  Authorization: rejected")
    if result.error:
        _eprint(f"  Error: {result.error}")
    _eprint()

    return 0 if result.ok else 1


def print_summary(result: PipelineResult) -> None:
    """Print a run summary to stderr."""
    _eprint()
    _eprint("📈 Flow Log Pipeline Summary")
    _eprint("=" * 50)
    _eprint(f"  Accounts: {len(result.accounts)}")
    _eprint(f"  Blobs processed: {result.blobs_processed}")
    _eprint(f"  Blobs skipped: {result.blobs_skipped}")
    _eprint(f"  Blobs failed: {result.blobs_failed}")
    _eprint(f"  Records: {result.total_records:,}")
    if result.delivery_reports:
        _eprint(
            f"  Delivered: {result.records_delivered:,} "
            f"(failed: {result.records_failed_delivery:,})"
        )
    _eprint(f"  Duration: {result.duration_seconds:.1f}s")
    if result.errors:
        _eprint()
        _eprint(f"❌ Errors ({len(result.errors)}):")
        for error in result.errors:
            _eprint(f"  - {error}")
    _eprint()


def print_listing(result: PipelineResult) -> None:
    """Print available blobs to stdout."""
    for account in result.accounts:
        if account.error:
            continue
        print(f"Available blobs in {account.account}:")
        for item in account.listed:
            print(f"  - {item.name}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup logging
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = apply_args(load_settings(args.config), args)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    errors = settings.validate()
    if errors:
        for error in errors:
            logger.error(f"Invalid configuration: {error}")
        return 1

    if args.verbose:
        logger.debug(f"Settings: {json.dumps(settings.to_dict(), default=str)}")

    if args.test_connectivity:
        try:
            return run_connectivity_check(settings)
        except DeliveryConfigError as e:
            logger.error(str(e))
            return 1

    try:
        accounts = resolve_accounts(args, settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    try:
        pipeline = FlowLogPipeline(settings)
    except DeliveryConfigError as e:
        logger.error(f"Failed to initialize pipeline: {e}")
        return 1

    with pipeline:
        try:
            result = pipeline.run(accounts, list_only=args.list_only)
        except KeyboardInterrupt:
            logger.warning("Interrupted")
            return 130

    if args.list_only:
        print_listing(result)
    else:
        print_summary(result)

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
