"""
Log store abstraction for logmirror.

This module provides a pluggable append-only table interface supporting:
- SQLite (stdlib sqlite3; default, and used by the test suite)
- PostgreSQL (psycopg; install the ``postgres`` extra)

The store is the source of truth. Mirrors are derived views that can
always be rebuilt with load_all() and kept current with fetch_since().

Invariants:
    - seq is assigned by the store and increases in commit order
    - insert_many() commits all rows or none
    - Reads always return rows ascending by seq

How to change safely:
    - New backends must implement the LogStore protocol
    - Keep catch-up keyed by seq; never diff by row count
"""

from .base import (
    LogRow,
    LogStore,
    RawRow,
    create_log_store,
    validate_table_name,
)
from .postgres import PostgresLogStore
from .sqlite import SqliteLogStore

__all__ = [
    # Protocol and types
    "LogStore",
    "LogRow",
    "RawRow",
    "validate_table_name",
    # Factory
    "create_log_store",
    # Implementations
    "SqliteLogStore",
    "PostgresLogStore",
]
