"""
Error types for logmirror.

This module defines every exception raised across the sync protocol:
- MirrorError: Base exception
- ValidationError: Payload rejected by the schema gate (write or read-back)
- StoreError: Log store query or transaction failure
- StoreConnectionError: Log store unreachable or not connected
- ChannelError: Notification channel publish/subscribe failure
- DrainError: One or more pollables failed during a notifier drain

Invariants:
    - All errors inherit from MirrorError
    - A raised error means the triggering operation applied nothing
    - Errors include context for debugging
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple


class MirrorError(Exception):
    """Base exception for all logmirror errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "MIRROR_ERROR"
        self.details = details or {}


class ValidationError(MirrorError):
    """Payload failed schema validation.

    Raised when:
    - A record passed to append() does not match the schema
    - A row read back from the store does not match the schema
    - A stored payload is not decodable JSON

    Attributes:
        errors: Field-level failures as reported by pydantic
            (dicts with ``loc``, ``msg`` and ``type``)
        index: Position of the failing item within its batch, if any
        seq: Sequence number of the failing row, for read-back failures
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        index: Optional[int] = None,
        seq: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"errors": errors or [], "index": index, "seq": seq},
        )
        self.errors = errors or []
        self.index = index
        self.seq = seq


class StoreError(MirrorError):
    """Log store operation failed.

    Raised when a query or transaction fails. Nothing is retried here;
    retry and backoff belong to the caller.
    """

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        code: str = "STORE_ERROR",
    ) -> None:
        super().__init__(message, code=code, details={"table": table})
        self.table = table


class StoreConnectionError(StoreError):
    """Log store is unreachable or was used before connect()."""

    def __init__(self, message: str, table: Optional[str] = None) -> None:
        super().__init__(message, table=table, code="STORE_CONNECTION_ERROR")


class ChannelError(MirrorError):
    """Notification channel operation failed.

    Raised from ChangeNotifier.start() and ChangeNotifier.notify().
    A failed start() leaves the notifier idle.
    """

    def __init__(self, message: str, channel: Optional[str] = None) -> None:
        super().__init__(message, code="CHANNEL_ERROR", details={"channel": channel})
        self.channel = channel


class DrainError(MirrorError):
    """One or more pollables failed during a drain cycle.

    Attributes:
        failures: (pollable, exception) pairs in registration order
    """

    def __init__(self, failures: Sequence[Tuple[Any, BaseException]]) -> None:
        first = failures[0][1] if failures else None
        super().__init__(
            f"{len(failures)} pollable(s) failed to sync: {first}",
            code="DRAIN_ERROR",
            details={"failures": [repr(exc) for _, exc in failures]},
        )
        self.failures = list(failures)
