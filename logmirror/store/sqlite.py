"""
SQLite log store for logmirror.

Each store instance is bound to one table in one SQLite file:

    <table>:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - data TEXT (JSON)

AUTOINCREMENT guarantees seq values are never reused, even after the
highest row is removed out-of-band, so a mirror frontier keyed by seq
stays valid for the life of the table.

Invariants:
    - One connection per operation; SQLite serializes writers
    - All writes run inside BEGIN IMMEDIATE ... COMMIT
    - insert_many inserts in input order inside one transaction, so
      returned seqs ascend positionally with the input
    - Payloads are stored as JSON text and returned undecoded (encoded=True)

How to change safely:
    - Never switch the key to a plain rowid alias; rowids can be reused
    - Test multi-writer behaviour with two store instances on one file
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Sequence

from ..errors import StoreConnectionError, StoreError
from .base import RawRow, validate_table_name

logger = logging.getLogger(__name__)


class SqliteLogStore:
    """SQLite implementation of the LogStore protocol.

    Thread safety:
        Each operation opens its own connection. Several instances
        (or processes) may write to the same file concurrently.

    Example:
        >>> store = SqliteLogStore("/var/lib/app/log.db", "events")
        >>> await store.connect()
        >>> await store.create_table()
        >>> rows = await store.insert_many([{"value": 1}, {"value": 2}])
        >>> [r.seq for r in rows]
        [1, 2]
    """

    def __init__(
        self,
        path: str,
        table: str,
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Initialize the store.

        Args:
            path: SQLite database file
            table: Log table name
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL journal mode
        """
        self.path = Path(path)
        self.table = validate_table_name(table)
        self.busy_timeout_ms = busy_timeout_ms
        self.wal_mode = wal_mode
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Open the database once to check it is usable.

        Raises:
            StoreConnectionError: If the file cannot be opened
        """
        if self._connected:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._open() as conn:
                conn.execute("SELECT 1")
        except (OSError, sqlite3.Error) as e:
            raise StoreConnectionError(
                f"Failed to open SQLite database {self.path}: {e}", table=self.table
            ) from e
        self._connected = True
        logger.info("SQLite log store connected", extra={"path": str(self.path), "table": self.table})

    async def close(self) -> None:
        self._connected = False
        logger.debug("SQLite log store closed", extra={"table": self.table})

    @contextmanager
    def _open(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Connection for one operation, with driver errors mapped to StoreError."""
        if not self._connected:
            raise StoreConnectionError("Not connected", table=self.table)
        try:
            with self._open() as conn:
                yield conn
        except sqlite3.OperationalError as e:
            raise StoreError(f"SQLite operation failed on {self.table}: {e}", table=self.table) from e
        except sqlite3.Error as e:
            raise StoreError(f"SQLite error on {self.table}: {e}", table=self.table) from e

    async def create_table(self) -> None:
        with self._connection() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    data TEXT NOT NULL
                )
                """
            )
        logger.info(f"Ensured log table exists: {self.table}")

    async def load_all(self) -> list[RawRow]:
        with self._connection() as conn:
            cursor = conn.execute(f"SELECT seq, data FROM {self.table} ORDER BY seq ASC")
            return [self._to_raw(row) for row in cursor.fetchall()]

    async def fetch_since(self, last_seq: int) -> list[RawRow]:
        """Return all rows with seq > last_seq, ascending.

        Args:
            last_seq: Frontier of the caller's mirror (0 for everything)
        """
        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT seq, data FROM {self.table} WHERE seq > ? ORDER BY seq ASC",
                (last_seq,),
            )
            return [self._to_raw(row) for row in cursor.fetchall()]

    async def insert_one(self, data: Any) -> RawRow:
        rows = await self.insert_many([data])
        return rows[0]

    async def insert_many(self, items: Sequence[Any]) -> list[RawRow]:
        """Insert payloads in one transaction.

        Args:
            items: JSON-compatible payloads

        Returns:
            Stored rows in input order

        Raises:
            StoreError: If the transaction fails; nothing is committed
        """
        if not items:
            return []

        encoded = [json.dumps(item) for item in items]
        rows: list[RawRow] = []

        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for item, text in zip(items, encoded):
                    cursor = conn.execute(
                        f"INSERT INTO {self.table} (data) VALUES (?)",
                        (text,),
                    )
                    rows.append(RawRow(seq=int(cursor.lastrowid), data=item))
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Inserted rows",
            extra={"table": self.table, "count": len(rows), "last_seq": rows[-1].seq},
        )
        return rows

    @staticmethod
    def _to_raw(row: sqlite3.Row) -> RawRow:
        return RawRow(seq=int(row["seq"]), data=row["data"], encoded=True)

    # Testing helpers

    async def insert_raw(self, text: str) -> int:
        """Insert a payload string verbatim, bypassing serialization.

        Simulates a foreign writer that does not share this process's
        schema. Returns the assigned seq.
        """
        with self._connection() as conn:
            cursor = conn.execute(f"INSERT INTO {self.table} (data) VALUES (?)", (text,))
            return int(cursor.lastrowid)

    async def count(self) -> int:
        """Number of rows in the table (testing helper)."""
        with self._connection() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0])
