"""
Application settings and configuration management.

Supports loading from:
1. YAML files (plain or SOPS-encrypted, e.g. config.enc.yaml)
2. Environment variables (fallback)

Settings are plain values handed to each component explicitly; there is no
cached module-level instance.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .constants import (
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONTAINER,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    OUTPUT_FORMATS,
)

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the run cannot start because configuration is unusable."""

    pass


def _safe_int(key: str, default: int) -> int:
    """Safely parse int from env var, using default on error."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _safe_float(key: str, default: float) -> float:
    """Safely parse float from env var, using default on error."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


def _safe_bool(key: str, default: bool) -> bool:
    """Safely parse bool from env var."""
    return os.environ.get(key, str(default).lower()).lower() in ("true", "1", "yes")


# =============================================================================
# Delivery Settings
# =============================================================================


@dataclass
class DeliverySettings:
    """
    Configuration for posting denormalized records to an HTTP collector.

    Delivery is disabled when no endpoint is configured.
    """

    endpoint: str = ""
    bearer_token: Optional[str] = None
    compress: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS

    @property
    def enabled(self) -> bool:
        """True when an endpoint has been configured."""
        return bool(self.endpoint)

    def validate(self) -> list[str]:
        """Validate settings values. Returns list of errors."""
        errors = []

        if self.endpoint and not self.endpoint.startswith(("http://", "https://")):
            errors.append(f"delivery.endpoint must be an http(s) URL, got {self.endpoint!r}")
        if self.batch_size < 1:
            errors.append(f"delivery.batch_size must be >= 1, got {self.batch_size}")
        if self.timeout_seconds <= 0:
            errors.append(
                f"delivery.timeout_seconds must be > 0, got {self.timeout_seconds}"
            )
        if self.max_retries < 0:
            errors.append(f"delivery.max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_seconds < 0:
            errors.append(
                f"delivery.base_delay_seconds must be >= 0, got {self.base_delay_seconds}"
            )

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization (token redacted)."""
        return {
            "endpoint": self.endpoint,
            "bearer_token": "***" if self.bearer_token else None,
            "compress": self.compress,
            "batch_size": self.batch_size,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "base_delay_seconds": self.base_delay_seconds,
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "DeliverySettings":
        """Create from configuration dictionary."""
        return cls(
            endpoint=config.get("endpoint", "") or "",
            bearer_token=config.get("bearer_token") or None,
            compress=config.get("compress", True),
            batch_size=config.get("batch_size", DEFAULT_BATCH_SIZE),
            timeout_seconds=config.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
            max_retries=config.get("max_retries", DEFAULT_MAX_RETRIES),
            base_delay_seconds=config.get(
                "base_delay_seconds", DEFAULT_BASE_DELAY_SECONDS
            ),
        )

    @classmethod
    def from_env(cls) -> "DeliverySettings":
        """Create from environment variables."""
        return cls(
            endpoint=os.environ.get("FLOW_LOG_ENDPOINT", ""),
            bearer_token=os.environ.get("FLOW_LOG_BEARER_TOKEN") or None,
            compress=_safe_bool("FLOW_LOG_COMPRESS", True),
            batch_size=_safe_int("FLOW_LOG_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            timeout_seconds=_safe_float(
                "FLOW_LOG_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS
            ),
            max_retries=_safe_int("FLOW_LOG_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            base_delay_seconds=_safe_float(
                "FLOW_LOG_BASE_DELAY_SECONDS", DEFAULT_BASE_DELAY_SECONDS
            ),
        )


# =============================================================================
# Processing Settings
# =============================================================================


@dataclass
class ProcessingSettings:
    """Configuration for blob selection, incremental state and output."""

    force_reprocess: bool = False
    track_state: bool = True
    limit: Optional[int] = None
    max_workers: int = 1
    output_path: Optional[str] = None
    output_format: str = "json"
    per_source: bool = False

    def validate(self) -> list[str]:
        """Validate settings values. Returns list of errors."""
        errors = []

        if self.output_format not in OUTPUT_FORMATS:
            errors.append(
                f"processing.output_format must be one of {', '.join(OUTPUT_FORMATS)}, "
                f"got {self.output_format!r}"
            )
        if self.limit is not None and self.limit < 1:
            errors.append(f"processing.limit must be >= 1, got {self.limit}")
        if self.max_workers < 1:
            errors.append(f"processing.max_workers must be >= 1, got {self.max_workers}")

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "force_reprocess": self.force_reprocess,
            "track_state": self.track_state,
            "limit": self.limit,
            "max_workers": self.max_workers,
            "output_path": self.output_path,
            "output_format": self.output_format,
            "per_source": self.per_source,
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "ProcessingSettings":
        """Create from configuration dictionary."""
        return cls(
            force_reprocess=config.get("force_reprocess", False),
            track_state=config.get("track_state", True),
            limit=config.get("limit"),
            max_workers=config.get("max_workers", 1),
            output_path=config.get("output_path"),
            output_format=config.get("output_format", "json"),
            per_source=config.get("per_source", False),
        )

    @classmethod
    def from_env(cls) -> "ProcessingSettings":
        """Create from environment variables."""
        limit = _safe_int("FLOW_LOG_LIMIT", 0)
        return cls(
            force_reprocess=_safe_bool("FLOW_LOG_FORCE_REPROCESS", False),
            track_state=_safe_bool("FLOW_LOG_TRACK_STATE", True),
            limit=limit if limit > 0 else None,
            max_workers=_safe_int("FLOW_LOG_MAX_WORKERS", 1),
            output_path=os.environ.get("FLOW_LOG_OUTPUT_PATH") or None,
            output_format=os.environ.get("FLOW_LOG_OUTPUT_FORMAT", "json"),
            per_source=_safe_bool("FLOW_LOG_PER_SOURCE", False),
        )


# =============================================================================
# Source Settings
# =============================================================================


@dataclass
class SourceSettings:
    """Where flow log blobs are read from."""

    storage_accounts: list[str] = field(default_factory=list)
    container: str = DEFAULT_CONTAINER
    prefix: Optional[str] = None
    # "azure" reads from Blob Storage, "local" from a directory tree
    store_type: str = "azure"
    local_root: Optional[str] = None

    def validate(self) -> list[str]:
        """Validate settings values. Returns list of errors."""
        errors = []

        if not self.container:
            errors.append("source.container is required")
        if self.store_type not in ("azure", "local"):
            errors.append(
                f"source.store_type must be 'azure' or 'local', got {self.store_type!r}"
            )
        if self.store_type == "local" and not self.local_root:
            errors.append("source.local_root is required for the local store")

        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "storage_accounts": list(self.storage_accounts),
            "container": self.container,
            "prefix": self.prefix,
            "store_type": self.store_type,
            "local_root": self.local_root,
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "SourceSettings":
        """Create from configuration dictionary."""
        accounts = config.get("storage_accounts", [])
        if isinstance(accounts, str):
            accounts = [a.strip() for a in accounts.split(",") if a.strip()]
        return cls(
            storage_accounts=list(accounts),
            container=config.get("container", DEFAULT_CONTAINER),
            prefix=config.get("prefix"),
            store_type=config.get("store_type", "azure"),
            local_root=config.get("local_root"),
        )

    @classmethod
    def from_env(cls) -> "SourceSettings":
        """Create from environment variables."""
        accounts = os.environ.get("FLOW_LOG_STORAGE_ACCOUNTS", "")
        return cls(
            storage_accounts=[a.strip() for a in accounts.split(",") if a.strip()],
            container=os.environ.get("FLOW_LOG_CONTAINER", DEFAULT_CONTAINER),
            prefix=os.environ.get("FLOW_LOG_PREFIX") or None,
            store_type=os.environ.get("FLOW_LOG_STORE_TYPE", "azure"),
            local_root=os.environ.get("FLOW_LOG_LOCAL_ROOT") or None,
        )


# =============================================================================
# Main Settings
# =============================================================================


@dataclass
class Settings:
    """Application settings for a pipeline run."""

    source: SourceSettings = field(default_factory=SourceSettings)
    processing: ProcessingSettings = field(default_factory=ProcessingSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)

    def validate(self) -> list[str]:
        """Validate required settings are present. Returns list of errors."""
        errors = []
        errors.extend(self.source.validate())
        errors.extend(self.processing.validate())
        errors.extend(self.delivery.validate())
        return errors

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "source": self.source.to_dict(),
            "processing": self.processing.to_dict(),
            "delivery": self.delivery.to_dict(),
        }

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "Settings":
        """Create Settings from configuration dictionary (e.g., from SOPS)."""
        config = config or {}
        return cls(
            source=SourceSettings.from_dict(config.get("source", {}) or {}),
            processing=ProcessingSettings.from_dict(
                config.get("processing", {}) or {}
            ),
            delivery=DeliverySettings.from_dict(config.get("delivery", {}) or {}),
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings from environment variables."""
        return cls(
            source=SourceSettings.from_env(),
            processing=ProcessingSettings.from_env(),
            delivery=DeliverySettings.from_env(),
        )


# Default config file path
DEFAULT_CONFIG_PATH = Path("config.enc.yaml")


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings for a run.

    Loads from a YAML config file (SOPS-encrypted when the name ends in
    .enc.yaml) if available, otherwise from environment variables.

    Args:
        config_path: Optional path to config file

    Returns:
        Settings instance

    Raises:
        ConfigurationError: If an explicitly requested file cannot be loaded
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if path.exists():
        from .sops_loader import read_config_file

        try:
            return Settings.from_dict(read_config_file(path))
        except (RuntimeError, ValueError, OSError) as e:
            if config_path:
                raise ConfigurationError(f"Failed to load config from {path}: {e}") from e
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Falling back to environment variables")
    elif config_path:
        raise ConfigurationError(f"Config file not found: {path}")

    return Settings.from_env()
