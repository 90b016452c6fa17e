"""
logmirror - keep in-memory mirrors of append-only SQL log tables in sync.

Producers append validated records to a relational table; every process
that mirrors the table converges to its contents through explicit polls
and through change notifications.

Architecture:
    ┌──────────┐  append   ┌─────────────┐  insert   ┌──────────────┐
    │  Writer  │──────────▶│ Schema Gate │──────────▶│  Log Store   │
    └────┬─────┘           └─────────────┘           │ (SQLite/PG)  │
         │ notify                                    └──────┬───────┘
         ▼                                                  │ fetch_since
    ┌──────────┐ wake ┌────────────────┐  poll  ┌───────────▼──────────┐
    │ Channel  │─────▶│ ChangeNotifier │───────▶│ MirroredLog (+gate)  │
    └──────────┘      └───────┬────────┘        └───────────┬──────────┘
                              │ step once per drain          │ push_all
                              ▼                              ▼
                        ┌────────────────────────────────────────┐
                        │        Computation graph               │
                        └────────────────────────────────────────┘

Invariants:
    - The table is the source of truth; mirrors can always be rebuilt
    - seq is assigned by the store and increases in commit order
    - Mirrors are gap-free, ascending prefixes of the table
    - Every payload is validated on write and on read-back

Version: see _version.py.
"""

from ._version import __version__
from .errors import (
    ChannelError,
    DrainError,
    MirrorError,
    StoreConnectionError,
    StoreError,
    ValidationError,
)
from .notify import ChangeNotifier, InMemoryChannel, NotifierState
from .reactive import Graph
from .schema import SchemaGate
from .store import LogRow, RawRow, SqliteLogStore
from .sync import MirroredLog

__all__ = [
    "__version__",
    # Errors
    "MirrorError",
    "ValidationError",
    "StoreError",
    "StoreConnectionError",
    "ChannelError",
    "DrainError",
    # Core
    "LogRow",
    "RawRow",
    "SchemaGate",
    "MirroredLog",
    "ChangeNotifier",
    "NotifierState",
    "Graph",
    # Backends
    "SqliteLogStore",
    "InMemoryChannel",
]
