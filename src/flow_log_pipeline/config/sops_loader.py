"""
Config file reader.

Plain YAML is read directly. Files named *.enc.yaml / *.enc.yml are
SOPS-encrypted and decrypted through the ``sops`` binary, so delivery
tokens can be committed alongside the rest of the configuration.
"""

import subprocess
from pathlib import Path
from typing import Any, Union

import yaml

ENCRYPTED_SUFFIXES = (".enc.yaml", ".enc.yml")


def is_encrypted_config(file_path: Union[str, Path]) -> bool:
    """True when the file name marks it as SOPS-encrypted."""
    return Path(file_path).name.endswith(ENCRYPTED_SUFFIXES)


def _load_mapping(text: str, source: Path) -> dict[str, Any]:
    """Load YAML text; an empty document is an empty mapping."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {source}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(
            f"{source}: expected a mapping at the top level, got {type(data).__name__}"
        )
    return data


def decrypt_sops_file(file_path: Path) -> dict[str, Any]:
    """
    Decrypt a SOPS file and parse the plaintext YAML.

    Raises:
        FileNotFoundError: If the file doesn't exist
        RuntimeError: If sops is missing or cannot decrypt the file
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Encrypted config file not found: {file_path}")

    try:
        completed = subprocess.run(
            ["sops", "-d", str(file_path)],
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise RuntimeError(
            f"Cannot decrypt {file_path}: the sops binary is not on PATH "
            "(https://github.com/getsops/sops/releases)"
        ) from e
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"sops could not decrypt {file_path}: {e.stderr.strip()}") from e

    return _load_mapping(completed.stdout, file_path)


def read_config_file(file_path: Union[str, Path]) -> dict[str, Any]:
    """Read a YAML config file, decrypting it first when it is encrypted."""
    file_path = Path(file_path)
    if is_encrypted_config(file_path):
        return decrypt_sops_file(file_path)
    return _load_mapping(file_path.read_text(encoding="utf-8"), file_path)
