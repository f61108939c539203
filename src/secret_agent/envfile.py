"""Moving secrets between the vault and plaintext files (.env and templates)."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from dotenv import dotenv_values, set_key

from .errors import InvalidNameError, SecretAgentIOError
from .vault import Vault, env_var_name, validate_name

logger = logging.getLogger("secret_agent.envfile")

ENV_FILE_MODE = 0o600


@dataclass
class ImportReport:
    imported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


def _touch_private(path: Path) -> None:
    """Create `path` with owner-only permissions if it doesn't exist yet."""
    if path.exists():
        return
    fd = os.open(path, os.O_WRONLY | os.O_CREAT, ENV_FILE_MODE)
    os.close(fd)


def inject_placeholder(path: Path, placeholder: str, value: str) -> None:
    """Replace every occurrence of `placeholder` in a file with the value."""
    try:
        content = path.read_text()
    except OSError as e:
        raise SecretAgentIOError(f"failed to read file: {path}: {e}") from e

    if placeholder not in content:
        raise SecretAgentIOError(f"placeholder '{placeholder}' not found in file: {path}")

    try:
        path.write_text(content.replace(placeholder, value))
    except OSError as e:
        raise SecretAgentIOError(f"failed to write file: {path}: {e}") from e


def inject_env_format(path: Path, name: str, value: str, export: bool = False) -> None:
    """
    Set NAME=value in a .env file, replacing an existing line for NAME.

    NAME is the secret name without its bucket prefix. With export=True the
    line is written as `export NAME=value` for sourcing from shell scripts.
    """
    key = env_var_name(name)
    try:
        _touch_private(path)
        set_key(str(path), key, value, quote_mode="auto", export=export)
    except OSError as e:
        raise SecretAgentIOError(f"failed to write file: {path}: {e}") from e


def export_env(vault: Vault, path: Path, names: Optional[Iterable[str]] = None) -> list[str]:
    """
    Write secrets to a fresh .env file (mode 600).

    Exports `names`, or every secret in the vault when names is None.
    All values are read before the file is touched, so a missing secret
    leaves any existing file alone.
    """
    if names is None:
        names = [info.name for info in vault.list()]
    names = list(names)

    values = {name: vault.get(name) for name in names}
    if not values:
        return []

    try:
        if path.exists():
            path.unlink()
        _touch_private(path)
        for name, value in values.items():
            set_key(str(path), env_var_name(name), value, quote_mode="auto")
    except OSError as e:
        raise SecretAgentIOError(f"failed to write file: {path}: {e}") from e

    logger.debug("Exported %d secrets to %s", len(names), path)
    return names


def import_env(vault: Vault, path: Path) -> ImportReport:
    """
    Import NAME=value pairs from a .env file.

    Existing secrets are skipped rather than overwritten, so importing the
    same file twice is harmless. Keys without a value or with a name the
    vault won't accept are reported as invalid.
    """
    if not path.exists():
        raise SecretAgentIOError(f"failed to read file: {path}: no such file")

    try:
        entries = dotenv_values(path)
    except OSError as e:
        raise SecretAgentIOError(f"failed to read file: {path}: {e}") from e

    report = ImportReport()
    for name, value in entries.items():
        if value is None:
            report.invalid.append(name)
            continue
        try:
            validate_name(name)
        except InvalidNameError:
            logger.warning("Skipping invalid secret name in %s: %s", path, name)
            report.invalid.append(name)
            continue

        if vault.exists(name):
            report.skipped.append(name)
            continue

        vault.create(name, value)
        report.imported.append(name)

    return report
