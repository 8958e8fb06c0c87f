"""Local keystore for per-file encryption keys.

This module provides:
- Keystore: a directory of key files indexed by a SQLite database
- KeystoreEntry: one file id -> key file association

The index (.keys.db) only stores key file names. The key files live
next to it in the keystore directory, so the directory can be moved
as a whole.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from datamanager.core.errors import DataManagerError

logger = logging.getLogger(__name__)

KEYSTORE_DB_FILE = ".keys.db"


class KeyStoreError(DataManagerError):
    """Exception raised for keystore-related errors."""


class KeystoreNotDirectoryError(KeyStoreError):
    """Keystore path exists but is not a directory."""


class KeyAlreadyExistsError(KeyStoreError):
    """Keystore already holds a key for the file id."""

    def __init__(self, file_id: int) -> None:
        self.file_id = file_id
        super().__init__(f"Keystore already contains a key for file {file_id}")


class KeyUnavailableError(KeyStoreError):
    """No key, or no readable key file, for the file id."""

    def __init__(self, file_id: int) -> None:
        self.file_id = file_id
        super().__init__(f"No key available for file {file_id}")


@dataclass
class KeystoreEntry:
    """Association between a remote file and a local key file.

    Attributes:
        file_id: Remote file id.
        key_file: Key file name, relative to the keystore directory.
        created_at: Timestamp when the key was added.
    """

    file_id: int
    key_file: str
    created_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> KeystoreEntry:
        """Create KeystoreEntry from database row."""
        return cls(
            file_id=row["file_id"],
            key_file=row["key_file"],
            created_at=row["created_at"],
        )


class Keystore:
    """Directory of key files with a SQLite index.

    Use open() (or the context manager) before any other operation.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def db_path(self) -> Path:
        return self._path / KEYSTORE_DB_FILE

    def key_path(self, key_file: str) -> Path:
        """Full path of a key file inside the keystore."""
        return self._path / key_file

    def open(self) -> None:
        """Open the index, creating the directory if needed.

        Raises:
            KeystoreNotDirectoryError: If the path is not a directory.
        """
        if self._path.exists() and not self._path.is_dir():
            raise KeystoreNotDirectoryError(f"Keystore is not a directory: {self._path}")
        self._path.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS keys (
                file_id INTEGER PRIMARY KEY,
                key_file TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        logger.debug(f"Opened keystore {self._path}")

    def close(self) -> None:
        """Close the index. Safe to call twice."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Keystore:
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise KeyStoreError("Keystore is not open")
        return self._conn

    # === Key operations ===

    def has_key(self, file_id: int) -> bool:
        """Check if the keystore has an entry for file_id."""
        with self._lock:
            row = self._db().execute(
                "SELECT 1 FROM keys WHERE file_id = ?", (file_id,)
            ).fetchone()
        return row is not None

    def add_key(self, file_id: int, key_path: Path) -> None:
        """Register key_path as the key of file_id.

        Only the file name is stored: the key file must be (or be placed)
        in the keystore directory.

        Raises:
            KeyAlreadyExistsError: If file_id already has a key.
        """
        with self._lock:
            if self.has_key(file_id):
                raise KeyAlreadyExistsError(file_id)
            self._db().execute(
                "INSERT INTO keys (file_id, key_file, created_at) VALUES (?, ?, ?)",
                (file_id, Path(key_path).name, time.time()),
            )
        logger.info(f"Added key {Path(key_path).name} for file {file_id}")

    def save_key(self, file_id: int, key: bytes) -> Path:
        """Write key into the keystore directory and register it.

        Returns:
            Path of the new key file.

        Raises:
            KeyAlreadyExistsError: If file_id already has a key.
        """
        if self.has_key(file_id):
            raise KeyAlreadyExistsError(file_id)
        key_path = self.key_path(f"{file_id}.key")
        key_path.write_bytes(key)
        key_path.chmod(0o600)
        self.add_key(file_id, key_path)
        return key_path

    def get_entry(self, file_id: int) -> KeystoreEntry:
        """Return the entry of file_id.

        Raises:
            KeyUnavailableError: If there is no entry.
        """
        with self._lock:
            row = self._db().execute(
                "SELECT * FROM keys WHERE file_id = ?", (file_id,)
            ).fetchone()
        if row is None:
            raise KeyUnavailableError(file_id)
        return KeystoreEntry.from_row(row)

    def get_key(self, file_id: int) -> bytes:
        """Return the key material of file_id.

        Raises:
            KeyUnavailableError: No entry, or the key file is unreadable.
        """
        entry = self.get_entry(file_id)
        try:
            return self.key_path(entry.key_file).read_bytes()
        except OSError as e:
            raise KeyUnavailableError(file_id) from e

    def delete_key(self, file_id: int, remove_file: bool = False) -> KeystoreEntry:
        """Remove the entry of file_id.

        Args:
            file_id: Remote file id.
            remove_file: Also delete the key file from disk.

        Returns:
            The removed entry.

        Raises:
            KeyUnavailableError: If there is no entry.
        """
        entry = self.get_entry(file_id)
        with self._lock:
            self._db().execute("DELETE FROM keys WHERE file_id = ?", (file_id,))
        if remove_file:
            self.key_path(entry.key_file).unlink(missing_ok=True)
        logger.info(f"Deleted key for file {file_id}")
        return entry

    def list_keys(self) -> list[KeystoreEntry]:
        """List all entries ordered by file id."""
        with self._lock:
            rows = self._db().execute(
                "SELECT * FROM keys ORDER BY file_id"
            ).fetchall()
        return [KeystoreEntry.from_row(row) for row in rows]

    def key_count(self, valid_only: bool = True) -> int:
        """Count entries.

        Args:
            valid_only: Only count entries whose key file exists.
        """
        entries = self.list_keys()
        if not valid_only:
            return len(entries)
        return sum(1 for entry in entries if self.key_path(entry.key_file).is_file())
