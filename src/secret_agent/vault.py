"""Encrypted secret storage backed by SQLite."""

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from . import config
from . import crypto
from . import keychain
from .errors import (
    DecryptionError,
    InvalidNameError,
    SecretExistsError,
    SecretNotFoundError,
    StorageError,
)

logger = logging.getLogger("secret_agent.vault")

SCHEMA_VERSION = 1

_BUCKET_RE = re.compile(r"[A-Za-z0-9_-]+")
_BARE_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS secrets (
    name TEXT PRIMARY KEY,
    encrypted_value BLOB NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def split_name(name: str) -> tuple[Optional[str], str]:
    """Split 'bucket/NAME' into (bucket, NAME); plain names have no bucket."""
    if "/" in name:
        bucket, bare = name.split("/", 1)
        return bucket, bare
    return None, name


def env_var_name(name: str) -> str:
    """Environment variable name for a secret: the bucket prefix is dropped."""
    return split_name(name)[1]


def validate_name(name: str) -> None:
    """Raise InvalidNameError unless `name` is [bucket/]IDENTIFIER."""
    if not name:
        raise InvalidNameError(name, "name cannot be empty")

    bucket, bare = split_name(name)
    if bucket is not None and not _BUCKET_RE.fullmatch(bucket):
        raise InvalidNameError(
            name, "bucket can only contain alphanumeric characters, underscores, and hyphens"
        )
    if not bare:
        raise InvalidNameError(name, "name cannot be empty")
    if not (bare[0].isascii() and (bare[0].isalpha() or bare[0] == "_")):
        raise InvalidNameError(name, "name must start with a letter or underscore")
    if not _BARE_NAME_RE.fullmatch(bare):
        raise InvalidNameError(
            name, "name can only contain alphanumeric characters, underscores, and hyphens"
        )


@dataclass(frozen=True)
class SecretInfo:
    """Secret metadata. Never carries the value."""

    name: str
    created_at: datetime
    updated_at: datetime

    @property
    def bucket(self) -> Optional[str]:
        return split_name(self.name)[0]

    @property
    def env_name(self) -> str:
        return env_var_name(self.name)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise StorageError(f"Failed to {action}: {e}") from e


class Vault:
    """
    Handle on the vault database plus the master key.

    Open with Vault.open(); usable as a context manager. Every write is a
    single SQL statement in autocommit mode, and the database runs in WAL
    mode so concurrent CLI invocations don't corrupt each other.
    """

    def __init__(self, conn: sqlite3.Connection, master_key: str, path: Path):
        self._conn = conn
        self._master_key = master_key
        self.path = path

    @classmethod
    def open(cls, path: Optional[Path] = None, master_key: Optional[str] = None) -> "Vault":
        """
        Open the vault, creating the database and schema if needed.

        The master key is resolved through the keychain chain unless given.
        """
        path = path or config.get_vault_path()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create vault directory {path.parent}: {e}") from e

        with _storage_errors(f"open vault at {path}"):
            conn = sqlite3.connect(str(path), isolation_level=None, timeout=10.0)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(_SCHEMA)
                _init_schema_version(conn)
            except Exception:
                conn.close()
                raise

        if master_key is None:
            try:
                master_key = keychain.get_or_create_master_key()
            except Exception:
                conn.close()
                raise

        logger.debug("Opened vault %s", path)
        return cls(conn, master_key, path)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "Vault":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def create(self, name: str, value: str) -> None:
        """Store a new secret; SecretExistsError if the name is taken."""
        validate_name(name)
        encrypted = crypto.encrypt(value.encode("utf-8"), self._master_key)
        now = _now()

        with _storage_errors(f"create secret '{name}'"):
            try:
                self._conn.execute(
                    "INSERT INTO secrets (name, encrypted_value, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (name, encrypted, now, now),
                )
            except sqlite3.IntegrityError:
                raise SecretExistsError(name) from None

    def create_or_update(self, name: str, value: str) -> None:
        """Store a secret, silently overwriting any existing value."""
        validate_name(name)
        encrypted = crypto.encrypt(value.encode("utf-8"), self._master_key)
        now = _now()

        with _storage_errors(f"store secret '{name}'"):
            self._conn.execute(
                "INSERT INTO secrets (name, encrypted_value, created_at, updated_at) "
                "VALUES (?, ?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET "
                "encrypted_value = excluded.encrypted_value, updated_at = excluded.updated_at",
                (name, encrypted, now, now),
            )

    def get(self, name: str) -> str:
        """Return the decrypted value of a secret."""
        with _storage_errors(f"read secret '{name}'"):
            row = self._conn.execute(
                "SELECT encrypted_value FROM secrets WHERE name = ?", (name,)
            ).fetchone()

        if row is None:
            raise SecretNotFoundError(name)

        plaintext = crypto.decrypt(bytes(row[0]), self._master_key)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"secret '{name}' is not valid UTF-8") from e

    def update(self, name: str, value: str) -> None:
        """Re-encrypt an existing secret with a new value."""
        validate_name(name)
        encrypted = crypto.encrypt(value.encode("utf-8"), self._master_key)

        with _storage_errors(f"update secret '{name}'"):
            cursor = self._conn.execute(
                "UPDATE secrets SET encrypted_value = ?, updated_at = ? WHERE name = ?",
                (encrypted, _now(), name),
            )
        if cursor.rowcount == 0:
            raise SecretNotFoundError(name)

    def delete(self, name: str) -> None:
        validate_name(name)

        with _storage_errors(f"delete secret '{name}'"):
            cursor = self._conn.execute("DELETE FROM secrets WHERE name = ?", (name,))
        if cursor.rowcount == 0:
            raise SecretNotFoundError(name)

    def list(self, bucket: Optional[str] = None) -> list[SecretInfo]:
        """List secrets ordered by name (metadata only, no values)."""
        query = "SELECT name, created_at, updated_at FROM secrets"
        params: tuple = ()
        if bucket is not None:
            prefix = bucket.rstrip("/") + "/"
            query += " WHERE substr(name, 1, ?) = ?"
            params = (len(prefix), prefix)
        query += " ORDER BY name"

        with _storage_errors("list secrets"):
            rows = self._conn.execute(query, params).fetchall()

        return [
            SecretInfo(name, _parse_timestamp(created), _parse_timestamp(updated))
            for name, created, updated in rows
        ]

    def exists(self, name: str) -> bool:
        with _storage_errors(f"look up secret '{name}'"):
            row = self._conn.execute(
                "SELECT 1 FROM secrets WHERE name = ?", (name,)
            ).fetchone()
        return row is not None


def _init_schema_version(conn: sqlite3.Connection) -> None:
    row = conn.execute(
        "SELECT CAST(value AS INTEGER) FROM metadata WHERE key = 'schema_version'"
    ).fetchone()

    if row is None:
        # First run; OR IGNORE covers a concurrent first open
        conn.execute(
            "INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
    elif row[0] < SCHEMA_VERSION:
        # Migrations from older versions go here
        conn.execute(
            "UPDATE metadata SET value = ? WHERE key = 'schema_version'",
            (str(SCHEMA_VERSION),),
        )
    elif row[0] > SCHEMA_VERSION:
        raise StorageError(
            f"Vault schema version {row[0]} is newer than supported ({SCHEMA_VERSION})"
        )
