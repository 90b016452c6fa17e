"""
PostgreSQL log store for logmirror.

Table schema:

    <table>:
        - seq BIGSERIAL PRIMARY KEY
        - data JSONB NOT NULL

Invariants:
    - Inserts run in one transaction and return seq via RETURNING
    - Writers take a SHARE ROW EXCLUSIVE table lock before drawing any
      seq and hold it until commit, so seq order equals commit order and
      no row can commit below a seq a reader has already seen
    - JSONB values come back already decoded (encoded=False)
    - A sequence value consumed by a rolled-back insert is never reused,
      so seq may have gaps but never repeats

How to change safely:
    - Keep identifiers composed with psycopg.sql, never string formatting
    - Never draw a seq outside the write lock
    - Test against a real server (tests/integration/test_postgres.py)
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ..errors import StoreConnectionError, StoreError
from .base import RawRow, validate_table_name

logger = logging.getLogger(__name__)

# Try to import psycopg, provide helpful message if not installed
try:
    import psycopg
    from psycopg import sql
    from psycopg.types.json import Jsonb

    PSYCOPG_AVAILABLE = True
except ImportError:
    PSYCOPG_AVAILABLE = False
    psycopg = None


class PostgresLogStore:
    """PostgreSQL implementation of the LogStore protocol.

    Uses a single psycopg AsyncConnection in autocommit mode; write
    operations open an explicit transaction block.

    Example:
        >>> store = PostgresLogStore("postgresql:///app", "events")
        >>> await store.connect()
        >>> row = await store.insert_one({"value": 42})
    """

    def __init__(self, dsn: str, table: str) -> None:
        """Initialize the store.

        Args:
            dsn: libpq connection string
            table: Log table name

        Raises:
            ImportError: If psycopg is not installed
        """
        if not PSYCOPG_AVAILABLE:
            raise ImportError(
                "psycopg is required for the Postgres backend. "
                "Install with: pip install 'logmirror[postgres]'"
            )
        self.dsn = dsn
        self.table = validate_table_name(table)
        self._conn: psycopg.AsyncConnection | None = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    async def connect(self) -> None:
        if self.is_connected:
            return
        try:
            self._conn = await psycopg.AsyncConnection.connect(self.dsn, autocommit=True)
        except psycopg.Error as e:
            raise StoreConnectionError(f"Failed to connect to Postgres: {e}", table=self.table) from e
        logger.info("Postgres log store connected", extra={"table": self.table})

    async def close(self) -> None:
        if self._conn is not None:
            try:
                await self._conn.close()
            except psycopg.Error as e:
                logger.warning(f"Error closing Postgres connection: {e}")
            self._conn = None
        logger.debug("Postgres log store closed", extra={"table": self.table})

    def _require_conn(self) -> psycopg.AsyncConnection:
        if not self.is_connected:
            raise StoreConnectionError("Not connected", table=self.table)
        return self._conn

    async def create_table(self) -> None:
        conn = self._require_conn()
        query = sql.SQL(
            "CREATE TABLE IF NOT EXISTS {} (seq BIGSERIAL PRIMARY KEY, data JSONB NOT NULL)"
        ).format(sql.Identifier(self.table))
        try:
            await conn.execute(query)
        except psycopg.Error as e:
            raise StoreError(f"Failed to create {self.table}: {e}", table=self.table) from e

    async def load_all(self) -> list[RawRow]:
        query = sql.SQL("SELECT seq, data FROM {} ORDER BY seq ASC").format(
            sql.Identifier(self.table)
        )
        return await self._select(query, ())

    async def fetch_since(self, last_seq: int) -> list[RawRow]:
        query = sql.SQL("SELECT seq, data FROM {} WHERE seq > %s ORDER BY seq ASC").format(
            sql.Identifier(self.table)
        )
        return await self._select(query, (last_seq,))

    async def _select(self, query: Any, params: tuple) -> list[RawRow]:
        conn = self._require_conn()
        try:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                records = await cur.fetchall()
        except psycopg.OperationalError as e:
            raise StoreConnectionError(f"Postgres connection failed: {e}", table=self.table) from e
        except psycopg.Error as e:
            raise StoreError(f"Query on {self.table} failed: {e}", table=self.table) from e
        return [RawRow(seq=int(seq), data=data) for seq, data in records]

    async def insert_one(self, data: Any) -> RawRow:
        rows = await self.insert_many([data])
        return rows[0]

    async def insert_many(self, items: Sequence[Any]) -> list[RawRow]:
        """Insert payloads in one transaction, one statement per item.

        Separate statements keep the seq-to-input correspondence explicit;
        a multi-row VALUES list does not promise RETURNING order.

        Concurrent writers on the same table queue on the table lock;
        readers (plain SELECT) are not blocked.
        """
        if not items:
            return []

        conn = self._require_conn()
        lock = sql.SQL("LOCK TABLE {} IN SHARE ROW EXCLUSIVE MODE").format(
            sql.Identifier(self.table)
        )
        query = sql.SQL("INSERT INTO {} (data) VALUES (%s) RETURNING seq, data").format(
            sql.Identifier(self.table)
        )
        rows: list[RawRow] = []
        try:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(lock)
                    for item in items:
                        await cur.execute(query, (Jsonb(item),))
                        seq, data = await cur.fetchone()
                        rows.append(RawRow(seq=int(seq), data=data))
        except psycopg.OperationalError as e:
            raise StoreConnectionError(f"Postgres connection failed: {e}", table=self.table) from e
        except psycopg.Error as e:
            raise StoreError(f"Insert into {self.table} failed: {e}", table=self.table) from e

        logger.debug(
            "Inserted rows",
            extra={"table": self.table, "count": len(rows), "last_seq": rows[-1].seq},
        )
        return rows
