"""
Base protocol and types for the log store abstraction.

This module defines the LogStore protocol that every relational backend
implements, along with the row types that cross the store boundary.

Invariants:
    - seq is assigned by the store only, never by a client
    - seq values are unique and increase in commit order
    - Rows are never updated or deleted through this interface
    - Catch-up is keyed by seq (fetch_since), never by row count

How to change safely:
    - Protocol changes require updating all implementations
    - A new backend must return rows ascending by seq from every read
    - A new backend must serialize seq allocation with commit (SQLite
      BEGIN IMMEDIATE, a Postgres table lock); a seq committed after a
      higher one would be skipped by every mirror past it
    - Keep insert_many atomic: all rows commit or none do
"""

from __future__ import annotations

import logging
import re
from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Generic,
    List,
    Protocol,
    Sequence,
    TypeVar,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class RawRow:
    """A row as read from the store, before schema validation.

    Attributes:
        seq: Store-assigned sequence number
        data: Payload as produced by the driver
        encoded: True when data is still JSON text (drivers without a
            native JSON type); the schema gate decodes it before validation
    """
    seq: int
    data: Any
    encoded: bool = False


@dataclass(frozen=True)
class LogRow(Generic[T]):
    """A persisted, validated record and its sequence number.

    Attributes:
        seq: Store-assigned sequence number
        data: Record validated against the log's schema
    """
    seq: int
    data: T

    def __str__(self) -> str:
        return f"LogRow(seq={self.seq})"


def validate_table_name(table: str) -> str:
    """Check that a table name is a plain SQL identifier.

    Table names are interpolated into statements, so only
    ``[A-Za-z_][A-Za-z0-9_]*`` is accepted.

    Raises:
        ValueError: If the name is not a plain identifier
    """
    if not isinstance(table, str) or not _TABLE_NAME_RE.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


@runtime_checkable
class LogStore(Protocol):
    """Protocol for append-only, server-sequenced log tables.

    One store instance is bound to one table whose schema is
    ``(seq <increasing integer primary key>, data <JSON>)``.

    Durability contract:
        - insert_one()/insert_many() return only after commit
        - insert_many() is a single transaction

    Ordering contract:
        - Every read returns rows ascending by seq
        - insert_many() results match the input order position by position

    Example:
        >>> store = SqliteLogStore("/tmp/app.db", "events")
        >>> await store.connect()
        >>> row = await store.insert_one({"value": 42})
        >>> newer = await store.fetch_since(row.seq - 1)
    """

    table: str

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backing database.

        Raises:
            StoreConnectionError: If the database is unreachable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        ...

    @abstractmethod
    async def create_table(self) -> None:
        """Create the log table if it does not exist."""
        ...

    @abstractmethod
    async def load_all(self) -> List[RawRow]:
        """Return every row ascending by seq."""
        ...

    @abstractmethod
    async def insert_one(self, data: Any) -> RawRow:
        """Insert one JSON-compatible payload.

        Returns:
            The stored row with its assigned seq

        Raises:
            StoreError: If the insert fails
        """
        ...

    @abstractmethod
    async def insert_many(self, items: Sequence[Any]) -> List[RawRow]:
        """Insert payloads atomically.

        Returns:
            Stored rows, ascending by seq, one per input item in input order

        Raises:
            StoreError: If the transaction fails (nothing is committed)
        """
        ...

    @abstractmethod
    async def fetch_since(self, last_seq: int) -> List[RawRow]:
        """Return all rows with seq > last_seq, ascending."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...


def create_log_store(settings: "Settings", table: str) -> LogStore:
    """Factory function to create a log store from configuration.

    Args:
        settings: Application settings
        table: Table the store is bound to

    Returns:
        Appropriate LogStore implementation

    Raises:
        ValueError: If the backend is not supported or misconfigured
    """
    from ..config import StoreBackend

    if settings.store_backend == StoreBackend.SQLITE:
        from .sqlite import SqliteLogStore

        return SqliteLogStore(
            settings.sqlite_path,
            table,
            busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            wal_mode=settings.sqlite_wal_mode,
        )
    elif settings.store_backend == StoreBackend.POSTGRES:
        if not settings.postgres_dsn:
            raise ValueError("LOGMIRROR_POSTGRES_DSN is required when store_backend=postgres")
        from .postgres import PostgresLogStore

        return PostgresLogStore(settings.postgres_dsn, table)
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
