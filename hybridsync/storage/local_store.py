"""Local SQLite storage for synchronized JSON documents."""

import logging
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .base import (
    MISSING,
    RESERVED_PREFIX,
    AsyncStorage,
    InvalidKeyError,
    InvalidValueError,
    MetaIndex,
    validate_key,
)
from .serializer import JSONSerializer, Serializer, md5_fingerprint

logger = logging.getLogger(__name__)

META_KEY = "@meta"

# SQL schema for the local document store
SCHEMA = """
-- Documents and bookkeeping rows, namespaced by store instance
CREATE TABLE IF NOT EXISTS kv_store (
    instance TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (instance, key)
);
"""


class LocalStore(AsyncStorage):
    """SQLite-backed document store with a persisted meta index.

    User documents and the ``@meta`` index row are always written in the same
    transaction, so the index never disagrees with the stored values.
    Keys starting with ``@`` are reserved for bookkeeping written through
    :meth:`set_reserved` (the commit queue keeps its tasks there).
    """

    def __init__(
        self,
        instance_name: str,
        db_path: str | Path = ":memory:",
        serializer: Serializer | None = None,
        fingerprint: Callable[[str], str] = md5_fingerprint,
    ):
        """Initialize the local store.

        Args:
            instance_name: Namespace for this store's rows.
            db_path: Path to SQLite database file, or ":memory:".
            serializer: Value codec. Defaults to compact JSON.
            fingerprint: Pure function mapping serialized values to fingerprints.
        """
        self.instance_name = instance_name
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._serializer = serializer or JSONSerializer()
        self._fingerprint = fingerprint
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore '{self.instance_name}' connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    # ==================== Raw row access ====================

    def _read_raw(self, key: str) -> str | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM kv_store WHERE instance = ? AND key = ?",
            (self.instance_name, key),
        ).fetchone()
        return row["value"] if row else None

    def _write_raw(self, conn: sqlite3.Connection, key: str, data: str) -> None:
        conn.execute(
            """
            INSERT INTO kv_store (instance, key, value, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (instance, key)
            DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (self.instance_name, key, data),
        )

    def _delete_raw(self, conn: sqlite3.Connection, key: str) -> None:
        conn.execute(
            "DELETE FROM kv_store WHERE instance = ? AND key = ?",
            (self.instance_name, key),
        )

    def _load_meta_index(self) -> MetaIndex:
        data = self._read_raw(META_KEY)
        if data is None:
            return {}
        return self._serializer.deserialize(data)

    # ==================== Document Operations ====================

    def get_sync(self, key: str, default: Any = None) -> Any:
        """Synchronously return the value under key, or default if absent.

        Reserved keys are readable here so bookkeeping state can be
        restored at construction time without awaiting.
        """
        data = self._read_raw(key)
        if data is None:
            return default
        return self._serializer.deserialize(data)

    async def get(self, key: str, default: Any = None) -> Any:
        validate_key(key)
        return self.get_sync(key, default)

    async def set(self, key: str, value: Any) -> str:
        validate_key(key)
        if value is MISSING:
            raise InvalidValueError(f"Cannot store a missing value under {key!r}")
        data = self._serializer.serialize(value)
        etag = self._fingerprint(data)

        conn = self._ensure_connected()
        meta_index = self._load_meta_index()
        meta_index[key] = {"etag": etag}
        with conn:
            self._write_raw(conn, key, data)
            self._write_raw(conn, META_KEY, self._serializer.serialize(meta_index))

        logger.debug(f"Stored {key!r} etag={etag}")
        return etag

    async def remove(self, key: str) -> None:
        validate_key(key)
        conn = self._ensure_connected()
        meta_index = self._load_meta_index()
        meta_index.pop(key, None)
        with conn:
            self._delete_raw(conn, key)
            self._write_raw(conn, META_KEY, self._serializer.serialize(meta_index))

        logger.debug(f"Removed {key!r}")

    async def meta_index(self) -> MetaIndex:
        return {key: dict(entry) for key, entry in self._load_meta_index().items()}

    # ==================== Bookkeeping Operations ====================

    async def set_reserved(self, key: str, value: Any) -> None:
        """Persist a bookkeeping value under a reserved ``@`` key.

        Reserved values are not part of the meta index and never sync.
        """
        if not key.startswith(RESERVED_PREFIX) or key == META_KEY:
            raise InvalidKeyError(f"Not a writable reserved key: {key!r}")
        data = self._serializer.serialize(value)
        conn = self._ensure_connected()
        with conn:
            self._write_raw(conn, key, data)

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with document counts and database size.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"instance_name": self.instance_name}
        stats["items_count"] = len(self._load_meta_index())

        cursor = conn.execute(
            "SELECT COUNT(*) FROM kv_store WHERE instance = ? AND key LIKE ?",
            (self.instance_name, f"{RESERVED_PREFIX}%"),
        )
        stats["reserved_count"] = cursor.fetchone()[0]

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats
