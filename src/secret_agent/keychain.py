"""
Master key resolution.

The key comes from the first tier that yields one:

1. SECRET_AGENT_PASSPHRASE (used verbatim)
2. the key file, when SECRET_AGENT_USE_FILE is set
3. the OS keychain; a fresh key is generated and stored on first use
4. the key file, when the keychain is unavailable or refuses the new key
5. an interactive hidden prompt, if the key file itself cannot be used

Headless sessions (no TTY on stdin, or over SSH) never reach the prompt: a
key file failure there is an error.

resolve_master_key() is a plain function of its inputs so every tier can be
tested with a fake credential store.
"""

import getpass
import logging
import os
import stat
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from . import config
from . import secret_gen
from .errors import KeySourceError

logger = logging.getLogger("secret_agent.keychain")

SERVICE_NAME = "secret-agent"
MASTER_KEY_NAME = "master-key"
MASTER_KEY_LENGTH = 32

KEY_FILE_MODE = 0o600
KEY_DIR_MODE = 0o700


class KeyTier(Enum):
    ENV = "environment"
    FILE = "key file"
    KEYCHAIN = "keychain"
    PROMPT = "prompt"


class CredentialStoreError(Exception):
    """The OS credential store is unavailable or refused an operation."""
    pass


class KeyringStore:
    """OS credential store backed by the `keyring` library."""

    def get(self, service: str, key: str) -> Optional[str]:
        try:
            return keyring.get_password(service, key)
        except KeyringError as e:
            raise CredentialStoreError(str(e)) from e

    def set(self, service: str, key: str, secret: str) -> None:
        try:
            keyring.set_password(service, key, secret)
        except KeyringError as e:
            raise CredentialStoreError(str(e)) from e

    def delete(self, service: str, key: str) -> None:
        try:
            keyring.delete_password(service, key)
        except PasswordDeleteError:
            # Already gone
            pass
        except KeyringError as e:
            raise CredentialStoreError(str(e)) from e


class NullStore:
    """Credential store for platforms without one: every call fails."""

    def get(self, service: str, key: str) -> Optional[str]:
        raise CredentialStoreError("no credential store available")

    def set(self, service: str, key: str, secret: str) -> None:
        raise CredentialStoreError("no credential store available")

    def delete(self, service: str, key: str) -> None:
        raise CredentialStoreError("no credential store available")


@dataclass(frozen=True)
class KeyEnvironment:
    """Snapshot of everything the resolution chain looks at."""

    passphrase: Optional[str]
    use_file: bool
    key_file: Path
    interactive: bool

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "KeyEnvironment":
        environ = os.environ if environ is None else environ
        return cls(
            passphrase=environ.get(config.ENV_PASSPHRASE) or None,
            use_file=config.use_file_storage(environ=environ),
            key_file=config.get_master_key_file(),
            interactive=is_interactive(environ),
        )


@dataclass(frozen=True)
class ResolvedKey:
    key: str
    tier: KeyTier

    def __repr__(self) -> str:
        return f"ResolvedKey(tier={self.tier.name})"


def is_interactive(environ: Optional[Mapping[str, str]] = None) -> bool:
    """True when a human can answer a prompt: stdin is a TTY and not over SSH."""
    environ = os.environ if environ is None else environ
    if environ.get("SSH_CONNECTION") or environ.get("SSH_TTY"):
        return False
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except ValueError:
        # stdin closed
        return False


def check_key_file_permissions(path: Path) -> None:
    """Reject a key file readable or writable by group/other."""
    if os.name != "posix":
        return

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & 0o077:
        raise KeySourceError(
            f"Master key file {path} has insecure permissions {oct(mode)}; "
            f"run: chmod 600 {path}"
        )


def read_key_file(path: Path) -> str:
    """Read the master key from `path`, verifying permissions first."""
    check_key_file_permissions(path)

    key = path.read_text().strip()
    if not key:
        raise KeySourceError(f"Master key file is empty: {path}")
    return key


def write_key_file(path: Path, key: str) -> None:
    """
    Create the key file with owner-only permissions. Never overwrites.

    The key is written to a private temp file which is then hard-linked into
    place, so `path` never exists without its content. Raises
    FileExistsError if another process created it first.
    """
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".master.key.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(key)
        os.chmod(tmp_name, KEY_FILE_MODE)
        os.link(tmp_name, path)
    finally:
        os.unlink(tmp_name)


def read_or_create_key_file(path: Path, new_key: Optional[str] = None) -> str:
    """
    Return the key stored at `path`, creating the file if it doesn't exist.

    A new file holds `new_key` when given, otherwise a freshly generated key.
    """
    if path.exists():
        return read_key_file(path)

    key = new_key or secret_gen.generate(MASTER_KEY_LENGTH, secret_gen.Charset.ALPHANUMERIC)
    path.parent.mkdir(mode=KEY_DIR_MODE, parents=True, exist_ok=True)
    try:
        write_key_file(path, key)
    except FileExistsError:
        # Lost a creation race with another process; use its key
        return read_key_file(path)

    logger.info("Created master key file %s", path)
    return key


def prompt_for_passphrase(prompt: Callable[[str], str] = getpass.getpass) -> str:
    print("Keychain unavailable. Please enter a passphrase for the vault:", file=sys.stderr)
    passphrase = prompt("Passphrase: ")

    if not passphrase:
        raise KeySourceError("passphrase cannot be empty")
    return passphrase


def resolve_master_key(
    env: KeyEnvironment,
    store=None,
    prompt: Callable[[str], str] = getpass.getpass,
) -> ResolvedKey:
    """
    Walk the fallback chain and return the first key found.

    Args:
        env: Environment snapshot (passphrase override, toggles, key file, TTY).
        store: Credential store with get/set/delete; defaults to KeyringStore.
        prompt: Hidden-input reader used only as the last resort.

    Raises:
        KeySourceError: Insecure key file, empty prompt, or no tier succeeded.
    """
    if env.passphrase:
        return ResolvedKey(env.passphrase, KeyTier.ENV)

    if env.use_file:
        return ResolvedKey(_file_tier(env.key_file), KeyTier.FILE)

    store = KeyringStore() if store is None else store
    new_key = None
    try:
        key = store.get(SERVICE_NAME, MASTER_KEY_NAME)
        if key:
            return ResolvedKey(key, KeyTier.KEYCHAIN)

        # First run: generate and store the master key
        new_key = secret_gen.generate(MASTER_KEY_LENGTH, secret_gen.Charset.ALPHANUMERIC)
        store.set(SERVICE_NAME, MASTER_KEY_NAME, new_key)
        logger.info("Stored new master key in keychain")
        return ResolvedKey(new_key, KeyTier.KEYCHAIN)

    except CredentialStoreError as e:
        logger.debug("Keychain unavailable (%s); falling back to key file", e)

    if not env.interactive:
        # Nobody to answer a prompt: the key file is the last source
        return ResolvedKey(_file_tier(env.key_file, new_key), KeyTier.FILE)

    try:
        return ResolvedKey(read_or_create_key_file(env.key_file, new_key), KeyTier.FILE)
    except OSError as e:
        logger.debug("Key file unusable (%s); prompting", e)

    return ResolvedKey(prompt_for_passphrase(prompt), KeyTier.PROMPT)


def _file_tier(path: Path, new_key: Optional[str] = None) -> str:
    try:
        return read_or_create_key_file(path, new_key)
    except OSError as e:
        raise KeySourceError(f"Cannot use master key file {path}: {e}") from e


def get_or_create_master_key() -> str:
    """Resolve the master key for this process from the real environment."""
    resolved = resolve_master_key(KeyEnvironment.from_environ())
    logger.debug("Master key resolved from %s", resolved.tier.value)
    return resolved.key


def delete_master_key(store=None) -> None:
    """Remove the master key from the keychain (reset helper)."""
    store = KeyringStore() if store is None else store
    store.delete(SERVICE_NAME, MASTER_KEY_NAME)
