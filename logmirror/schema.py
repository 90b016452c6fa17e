"""
Schema gate for logmirror.

Every payload crosses this gate twice:
- on the way out, before append() writes anything
- on the way back, before a row read from the store enters a mirror

Validation is delegated to pydantic. Any type pydantic can validate
works as a schema: BaseModel subclasses, TypedDicts, dataclasses,
primitives and containers of those.

Invariants:
    - Batches are all-or-nothing: the first failing item aborts the batch
    - A read-back failure names the offending seq
    - Stored JSON that does not decode is a validation failure, not a
      store failure
"""

from __future__ import annotations

import json
from typing import Any, Generic, Iterable, List, Optional, Sequence, TypeVar

import pydantic
from pydantic import TypeAdapter

from .errors import ValidationError
from .store.base import LogRow, RawRow

T = TypeVar("T")


def _error_details(exc: pydantic.ValidationError) -> List[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]


class SchemaGate(Generic[T]):
    """Validates untyped payloads into records of type T.

    Example:
        >>> class Reading(BaseModel):
        ...     value: int
        >>> gate = SchemaGate(Reading)
        >>> gate.validate({"value": "42"}).value
        42
    """

    def __init__(self, schema: Any) -> None:
        self.schema = schema
        self._adapter: TypeAdapter[T] = TypeAdapter(schema)

    @property
    def name(self) -> str:
        return getattr(self.schema, "__name__", repr(self.schema))

    def validate(self, raw: Any, index: Optional[int] = None, seq: Optional[int] = None) -> T:
        """Validate one payload.

        Args:
            raw: Untyped payload (already decoded from its storage encoding)
            index: Batch position, for error reporting
            seq: Row sequence number, for error reporting

        Returns:
            The validated record

        Raises:
            ValidationError: With pydantic's field-level errors attached
        """
        try:
            return self._adapter.validate_python(raw)
        except pydantic.ValidationError as e:
            where = f" at seq {seq}" if seq is not None else (
                f" at index {index}" if index is not None else ""
            )
            raise ValidationError(
                f"Payload does not match {self.name}{where}: {e.error_count()} error(s)",
                errors=_error_details(e),
                index=index,
                seq=seq,
            ) from e

    def validate_many(self, raws: Iterable[Any]) -> List[T]:
        return [self.validate(raw, index=i) for i, raw in enumerate(raws)]

    def validate_row(self, raw: RawRow, index: Optional[int] = None) -> LogRow[T]:
        """Validate a row read back from the store.

        JSON text from drivers without a native JSON type is decoded first.
        """
        payload = raw.data
        if raw.encoded:
            try:
                payload = json.loads(payload)
            except (TypeError, ValueError) as e:
                raise ValidationError(
                    f"Stored payload at seq {raw.seq} is not valid JSON: {e}",
                    errors=[{"loc": [], "msg": str(e), "type": "json_invalid"}],
                    index=index,
                    seq=raw.seq,
                ) from e
        return LogRow(seq=raw.seq, data=self.validate(payload, index=index, seq=raw.seq))

    def validate_rows(self, raws: Sequence[RawRow]) -> List[LogRow[T]]:
        """Validate a read-back batch. Raises on the first bad row."""
        return [self.validate_row(raw, index=i) for i, raw in enumerate(raws)]

    def dump(self, record: T) -> Any:
        """Serialize a validated record to a JSON-compatible value."""
        return self._adapter.dump_python(record, mode="json")
