"""Configuration module."""

from .accounts import (
    is_valid_account_name,
    load_accounts_from_env,
    load_accounts_from_file,
    parse_storage_accounts,
    validate_storage_accounts,
)
from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONTAINER,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    OUTPUT_FIELDS,
    PROCESSED_BY_TAG,
)
from .settings import (
    ConfigurationError,
    DeliverySettings,
    ProcessingSettings,
    Settings,
    SourceSettings,
    load_settings,
)
from .sops_loader import decrypt_sops_file, is_encrypted_config, read_config_file

__all__ = [
    # Defaults
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_CONTAINER",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_TIMEOUT_SECONDS",
    "OUTPUT_FIELDS",
    "PROCESSED_BY_TAG",
    # Settings
    "Settings",
    "SourceSettings",
    "ProcessingSettings",
    "DeliverySettings",
    "ConfigurationError",
    "load_settings",
    # Config loading
    "read_config_file",
    "decrypt_sops_file",
    "is_encrypted_config",
    # Storage accounts
    "parse_storage_accounts",
    "load_accounts_from_file",
    "load_accounts_from_env",
    "validate_storage_accounts",
    "is_valid_account_name",
]
