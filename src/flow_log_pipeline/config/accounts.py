"""
Storage account list loading.

Storage account names can come from the command line, a text file or an
environment variable. File and environment sources accept comma- and/or
newline-separated names; lines starting with '#' are comments.
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable, Union

from .constants import STORAGE_ACCOUNT_MAX_LENGTH, STORAGE_ACCOUNT_MIN_LENGTH
from .settings import ConfigurationError

logger = logging.getLogger(__name__)

_ACCOUNT_NAME_PATTERN = re.compile(
    rf"^[a-z0-9]{{{STORAGE_ACCOUNT_MIN_LENGTH},{STORAGE_ACCOUNT_MAX_LENGTH}}}$"
)


def parse_storage_accounts(content: str) -> list[str]:
    """
    Parse storage account names from free-form text.

    Args:
        content: Comma and/or newline separated names

    Returns:
        De-duplicated names in first-seen order

    Raises:
        ConfigurationError: If no names are found
    """
    accounts: list[str] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        for name in line.split(","):
            name = name.strip()
            if name and not name.startswith("#") and name not in accounts:
                accounts.append(name)

    if not accounts:
        raise ConfigurationError("No storage accounts found in the provided content")

    return accounts


def load_accounts_from_file(file_path: Union[str, Path]) -> list[str]:
    """Load storage account names from a text file."""
    path = Path(file_path)
    if not path.is_file():
        raise ConfigurationError(f"Storage accounts file not found: {path}")

    return parse_storage_accounts(path.read_text(encoding="utf-8"))


def load_accounts_from_env(variable_name: str) -> list[str]:
    """Load storage account names from an environment variable."""
    value = os.environ.get(variable_name, "")
    if not value.strip():
        raise ConfigurationError(
            f"Environment variable '{variable_name}' is not set or is empty"
        )

    return parse_storage_accounts(value)


def is_valid_account_name(name: str) -> bool:
    """Check Azure storage account naming rules (3-24 lowercase alphanumerics)."""
    return bool(_ACCOUNT_NAME_PATTERN.match(name))


def validate_storage_accounts(accounts: Iterable[str]) -> list[str]:
    """
    Drop names that cannot be Azure storage accounts.

    Invalid names are logged and skipped rather than failing the run.

    Raises:
        ConfigurationError: If no valid names remain
    """
    valid = []
    invalid = []
    for account in accounts:
        (valid if is_valid_account_name(account) else invalid).append(account)

    if invalid:
        logger.warning(
            f"Skipping {len(invalid)} invalid storage account name(s): "
            + ", ".join(repr(a) for a in invalid)
            + f" (must be {STORAGE_ACCOUNT_MIN_LENGTH}-{STORAGE_ACCOUNT_MAX_LENGTH} "
            "lowercase letters/numbers)"
        )

    if not valid:
        raise ConfigurationError("No valid storage account names found")

    return valid
