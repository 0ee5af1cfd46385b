"""SQLite-backed key-value store.

This module provides the KeyValueStore class: whole-value get/set of JSON
documents per key, with thread-local connections. It is the only
persistence engine of the application.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fundledger.utils.exceptions import PersistedDataError, StorageError
from fundledger.utils.logging import get_logger

logger = get_logger(__name__)

UPSERT_SQL = """
    INSERT INTO kv_store (key, value, updated_at)
    VALUES (?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
    value=excluded.value,
    updated_at=excluded.updated_at
"""


class KeyValueStore:
    """Manages the SQLite key-value table.

    Attributes:
        db_path: Path to the SQLite database file (":memory:" is not
            supported because connections are per thread).
    """

    def __init__(self, db_path: str):
        """Initialize the store and create its table.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._local = threading.local()
        self.create_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(self.db_path)
        return self._local.connection

    def create_tables(self) -> None:
        """Create the kv_store table if it doesn't exist."""
        schema_path = Path(__file__).parent / "schema.sql"
        try:
            schema = schema_path.read_text(encoding="utf-8")
            conn = self._get_connection()
            conn.executescript(schema)
            conn.commit()
            logger.info("Key-value store initialized at %s", self.db_path)
        except (OSError, sqlite3.Error) as e:
            logger.error("Failed to create tables: %s", e)
            raise StorageError(f"Store initialization failed: {e}") from e

    def get_raw(self, key: str) -> Optional[str]:
        """Return the stored text for a key, or None if absent."""
        conn = self._get_connection()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Failed to read key %s: %s", key, e)
            raise StorageError(f"Failed to read '{key}': {e}") from e
        return row[0] if row else None

    def get(self, key: str, default: Any = None) -> Any:
        """Load and decode the JSON value of a key.

        Args:
            key: Store key
            default: Returned when the key does not exist

        Returns:
            Decoded JSON value, or default

        Raises:
            PersistedDataError: If the stored text is not valid JSON
        """
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Corrupt JSON under key %s: %s", key, e)
            raise PersistedDataError(key, str(e)) from e

    def set(self, key: str, value: Any) -> None:
        """Encode and store a whole value under a key (upsert)."""
        self.set_raw(key, json.dumps(value, ensure_ascii=False))

    def set_raw(self, key: str, text: str) -> None:
        conn = self._get_connection()
        try:
            with conn:
                conn.execute(UPSERT_SQL, (key, text, datetime.now().isoformat()))
            logger.debug("Saved key %s (%d bytes)", key, len(text))
        except sqlite3.Error as e:
            logger.error("Failed to write key %s: %s", key, e)
            raise StorageError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str) -> None:
        conn = self._get_connection()
        try:
            with conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e

    def keys(self, prefix: str = "") -> List[str]:
        """List stored keys, optionally restricted to a prefix."""
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}") from e
        return [row[0] for row in rows]

    def export_snapshot(self) -> Dict[str, Any]:
        """Dump every key into one dict (the backup blob).

        Values that are not valid JSON are exported as their raw text so a
        damaged key never blocks a backup.
        """
        snapshot: Dict[str, Any] = {}
        for key in self.keys():
            raw = self.get_raw(key)
            try:
                snapshot[key] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Exporting key %s as raw text (not valid JSON)", key)
                snapshot[key] = raw
        return snapshot

    def import_snapshot(self, snapshot: Dict[str, Any]) -> int:
        """Write every key of a backup blob into the store.

        All keys are written in one transaction: either the whole snapshot
        lands or the store is left as it was. Keys not present in the
        snapshot are left untouched.

        Returns:
            Number of keys written

        Raises:
            StorageError: If the snapshot is not a dict, a value cannot be
                encoded, or the write fails
        """
        if not isinstance(snapshot, dict):
            raise StorageError(
                f"Backup snapshot must be an object, got {type(snapshot).__name__}"
            )
        updated_at = datetime.now().isoformat()
        try:
            rows = [
                (key, json.dumps(value, ensure_ascii=False), updated_at)
                for key, value in snapshot.items()
            ]
        except (TypeError, ValueError) as e:
            raise StorageError(f"Backup snapshot cannot be encoded: {e}") from e

        conn = self._get_connection()
        try:
            with conn:
                conn.executemany(UPSERT_SQL, rows)
        except sqlite3.Error as e:
            logger.error("Snapshot import rolled back: %s", e)
            raise StorageError(f"Failed to import snapshot: {e}") from e
        logger.info("Imported %d keys from snapshot", len(snapshot))
        return len(snapshot)

    def close(self):
        """Close the thread-local connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
