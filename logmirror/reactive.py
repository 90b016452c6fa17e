"""
Computation-engine boundary for logmirror.

Mirrors feed an incremental computation engine through two protocols:

    ComputationGraph: creates input logs and recomputes on step()
    LogSink:          an input log that accepts ascending batches of rows
                      and exposes snapshot, length and fold observables

A small reference engine (Graph, InputLog, Derived) implements both so the
package is usable without an external engine. It is deliberately minimal:
pushes are buffered, and nothing recomputes until step() is called.

Invariants:
    - push_all() never triggers recomputation
    - After step(), every Derived reflects every row pushed before it
    - Derived values update incrementally from the newly published rows
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, List, Protocol, Sequence, Tuple, TypeVar, runtime_checkable

logger = logging.getLogger(__name__)

T = TypeVar("T")
V = TypeVar("V")


@runtime_checkable
class LogSink(Protocol[T]):
    """Append-only input of a computation graph."""

    @property
    def snapshot(self) -> Tuple[T, ...]:
        ...

    def push_all(self, items: Sequence[T]) -> None:
        ...

    @property
    def length(self) -> "Derived[int]":
        ...

    def fold(self, initial: V, fn: Callable[[V, T], V]) -> "Derived[V]":
        ...


@runtime_checkable
class ComputationGraph(Protocol):
    """Incremental computation graph stepped explicitly by its owner."""

    def input_log(self, initial: Sequence[Any] = ()) -> LogSink:
        ...

    def step(self) -> None:
        ...


class Derived(Generic[V]):
    """A value recomputed from an InputLog on each graph step."""

    def __init__(self, initial: V, update: Callable[[V, Sequence[Any]], V]) -> None:
        self._value = initial
        self._update = update

    @property
    def value(self) -> V:
        return self._value

    def _apply(self, batch: Sequence[Any]) -> None:
        self._value = self._update(self._value, batch)


class InputLog(Generic[T]):
    """Reference LogSink: buffers pushes and publishes them on step."""

    def __init__(self, graph: "Graph", initial: Sequence[T] = ()) -> None:
        self._graph = graph
        self._snapshot: Tuple[T, ...] = tuple(initial)
        self._pending: List[T] = []
        self._derived: List[Derived[Any]] = []
        self._length: Derived[int] | None = None

    @property
    def snapshot(self) -> Tuple[T, ...]:
        """Rows published by the last step."""
        return self._snapshot

    def push_all(self, items: Sequence[T]) -> None:
        self._pending.extend(items)

    @property
    def length(self) -> Derived[int]:
        if self._length is None:
            self._length = self._derive(len(self._snapshot), lambda n, batch: n + len(batch))
        return self._length

    def fold(self, initial: V, fn: Callable[[V, T], V]) -> Derived[V]:
        """Left fold over the log, extended with each published batch.

        Example:
            >>> total = log.fold(0, lambda acc, row: acc + row.data.value)
            >>> graph.step()
            >>> total.value
        """

        def update(acc: V, batch: Sequence[T]) -> V:
            for item in batch:
                acc = fn(acc, item)
            return acc

        return self._derive(update(initial, self._snapshot), update)

    def _derive(self, initial: V, update: Callable[[V, Sequence[Any]], V]) -> Derived[V]:
        derived: Derived[V] = Derived(initial, update)
        self._derived.append(derived)
        return derived

    def _commit(self) -> None:
        if not self._pending:
            return
        batch, self._pending = tuple(self._pending), []
        self._snapshot = self._snapshot + batch
        for derived in self._derived:
            derived._apply(batch)


class Graph:
    """Reference ComputationGraph.

    Example:
        >>> graph = Graph()
        >>> log = graph.input_log()
        >>> log.push_all([1, 2, 3])
        >>> graph.step()
        >>> log.length.value
        3
    """

    def __init__(self) -> None:
        self._logs: List[InputLog[Any]] = []
        self.steps = 0

    def input_log(self, initial: Sequence[T] = ()) -> InputLog[T]:
        log: InputLog[T] = InputLog(self, initial)
        self._logs.append(log)
        return log

    def step(self) -> None:
        self.steps += 1
        for log in self._logs:
            log._commit()
        logger.debug("Graph stepped", extra={"step": self.steps})
