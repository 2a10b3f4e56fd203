"""SQLite key-value backend for lifesync.

Primary on-device store. One `kv` table; every operation runs in its own
short transaction on a fresh connection, so a put is atomic per key and a
put_many is atomic as a whole.
"""

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Tuple

from lifesync.protocols import StorageError
from lifesync.types import utc_now

from .base import from_json, to_json

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL
);
"""


class SQLiteBackend:
    """SQLite-backed key-value storage."""

    name = "sqlite"

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._opened = False

    def open(self) -> None:
        """Create the database file and schema. Raises if the file can't be opened."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA)
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        self._opened = True
        logger.debug(f"Opened SQLite store at {self.db_path}")

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    def _run(self, fn):
        try:
            with self._connect() as conn:
                return fn(conn)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite operation failed: {e}") from e

    def get(self, key: str) -> Optional[Any]:
        row = self._run(
            lambda conn: conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        )
        return from_json(row["value"]) if row else None

    def put(self, key: str, value: Any) -> None:
        self.put_many([(key, value)])

    def put_many(self, items: List[Tuple[str, Any]]) -> None:
        if not items:
            return
        now = utc_now()
        rows = [(key, to_json(value), now) for key, value in items]
        self._run(
            lambda conn: conn.executemany(
                """INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                rows,
            )
        )

    def delete(self, key: str) -> None:
        self._run(lambda conn: conn.execute("DELETE FROM kv WHERE key = ?", (key,)))

    def list(self, prefix: str) -> List[Tuple[str, Any]]:
        # Range scan instead of LIKE so '%' and '_' in keys need no escaping
        upper = prefix + "\uffff"
        rows = self._run(
            lambda conn: conn.execute(
                "SELECT key, value FROM kv WHERE key >= ? AND key < ? ORDER BY key",
                (prefix, upper),
            ).fetchall()
        )
        return [(row["key"], from_json(row["value"])) for row in rows]

    def close(self) -> None:
        """Connections are per-operation; nothing persistent to close."""
        self._opened = False
