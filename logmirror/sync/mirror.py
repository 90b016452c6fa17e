"""
Mirrored log: the local mirror and its sync engine.

A MirroredLog keeps an in-memory, ordered copy of one log table and
feeds it into a computation graph:

    create()  load_all -> validate every row -> build mirror
    append()  validate -> insert -> (catch up)
    poll()    fetch_since(frontier) -> validate batch -> extend mirror

Invariants:
    - The mirror is a gap-free, ascending, prefix-complete copy of the
      table up to its frontier
    - Nothing enters the mirror without passing the schema gate
    - A failed create()/poll() changes nothing; a batch is never applied
      partially
    - Rows at or below the frontier are never applied twice
    - Rows reach the graph in ascending seq order

How to change safely:
    - Never take rows from insert results straight into the mirror: a
      concurrent writer may have committed a lower seq in between
    - Keep catch-up keyed by the frontier, not by row counts
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from ..errors import MirrorError
from ..reactive import ComputationGraph, Derived, Graph, LogSink
from ..schema import SchemaGate
from ..store.base import LogRow, LogStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


class MirroredLog(Generic[T]):
    """In-memory mirror of one append-only log table.

    Attributes:
        store: Log store bound to the mirrored table
        gate: Schema gate for the record type
        graph: Computation graph the mirror feeds
        sync_on_append: Catch up right after each append

    Example:
        >>> readings = await MirroredLog.create(store, Reading, graph)
        >>> await readings.append_many([Reading(value=1), Reading(value=2)])
        >>> graph.step()
        >>> readings.length.value
        2
    """

    def __init__(
        self,
        store: LogStore,
        gate: SchemaGate[T],
        graph: ComputationGraph,
        rows: Sequence[LogRow[T]],
        sync_on_append: bool = True,
    ) -> None:
        """Wrap an already-validated snapshot. Use create() instead."""
        self.store = store
        self.gate = gate
        self.graph = graph
        self.sync_on_append = sync_on_append
        self._rows: List[LogRow[T]] = list(rows)
        self._frontier = self._rows[-1].seq if self._rows else 0
        self._log: LogSink = graph.input_log(self._rows)
        self._lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        store: LogStore,
        schema: Any,
        graph: Optional[ComputationGraph] = None,
        sync_on_append: bool = True,
    ) -> "MirroredLog[Any]":
        """Load the table and build a mirror.

        Args:
            store: Connected log store
            schema: Record type, or a SchemaGate wrapping one
            graph: Computation graph (a fresh reference Graph if omitted)
            sync_on_append: Catch up right after each append

        Returns:
            A mirror holding every row of the table

        Raises:
            ValidationError: If any stored row fails the schema (no mirror is built)
            StoreError: If the load fails
        """
        gate = schema if isinstance(schema, SchemaGate) else SchemaGate(schema)
        raw_rows = await store.load_all()
        rows = gate.validate_rows(raw_rows)
        logger.info(
            "Mirror loaded",
            extra={"table": store.table, "rows": len(rows), "frontier": rows[-1].seq if rows else 0},
        )
        return cls(store, gate, graph if graph is not None else Graph(), rows, sync_on_append)

    @property
    def table(self) -> str:
        return self.store.table

    @property
    def frontier(self) -> int:
        """Highest seq reflected in the mirror (0 when empty)."""
        return self._frontier

    @property
    def snapshot(self) -> Tuple[LogRow[T], ...]:
        """Immutable copy of the mirrored rows."""
        return tuple(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def as_log(self) -> LogSink:
        """The graph input log this mirror pushes into."""
        return self._log

    @property
    def length(self) -> Derived[int]:
        """Row count as seen by the graph (updates on step)."""
        return self._log.length

    def fold(self, initial: V, fn: Callable[[V, LogRow[T]], V]) -> Derived[V]:
        """Fold over the rows as seen by the graph (updates on step)."""
        return self._log.fold(initial, fn)

    async def append(self, record: Any) -> LogRow[T]:
        """Validate and durably append one record.

        Raises:
            ValidationError: If the record fails the schema (nothing written)
            StoreError: If the insert fails
        """
        rows = await self.append_many([record])
        return rows[0]

    async def append_many(self, records: Sequence[Any]) -> List[LogRow[T]]:
        """Validate and durably append records in one transaction.

        Every record is validated before anything is written. With
        sync_on_append, the mirror then catches up via poll(), which also
        picks up rows other writers committed in between. A catch-up
        failure is logged and left for the next poll() to report; it never
        fails the append.

        Returns:
            The stored rows in input order

        Raises:
            ValidationError: If any record fails the schema (nothing written)
            StoreError: If the insert fails (nothing committed)
        """
        if not records:
            return []

        validated = self.gate.validate_many(records)
        payloads = [self.gate.dump(record) for record in validated]
        raw_rows = await self.store.insert_many(payloads)
        rows = [LogRow(seq=raw.seq, data=record) for raw, record in zip(raw_rows, validated)]

        logger.debug(
            "Appended rows",
            extra={"table": self.table, "count": len(rows), "last_seq": rows[-1].seq},
        )

        if self.sync_on_append:
            # Insert already committed: a catch-up failure is not an append failure
            try:
                await self.poll()
            except MirrorError as e:
                logger.warning(
                    f"Catch-up after append failed: {e}",
                    exc_info=True,
                    extra={"table": self.table, "frontier": self._frontier},
                )
        return rows

    async def poll(self) -> List[LogRow[T]]:
        """Catch up with every row committed past the frontier.

        Returns:
            Rows newly added to the mirror (empty when already current)

        Raises:
            ValidationError: If any fetched row fails the schema; the
                mirror is left unchanged
            StoreError: If the fetch fails
        """
        async with self._lock:
            raw_rows = await self.store.fetch_since(self._frontier)
            rows = self.gate.validate_rows(raw_rows)
            added = self._extend(rows)

        logger.debug(
            f"Poll: fetched {len(added)} new rows",
            extra={"table": self.table, "frontier": self._frontier},
        )
        return added

    def _extend(self, rows: Sequence[LogRow[T]]) -> List[LogRow[T]]:
        fresh = [row for row in rows if row.seq > self._frontier]
        if not fresh:
            return []
        self._rows.extend(fresh)
        self._frontier = fresh[-1].seq
        self._log.push_all(fresh)
        return fresh

    def __repr__(self) -> str:
        return f"MirroredLog(table={self.table!r}, rows={len(self._rows)}, frontier={self._frontier})"
