"""
Record store contract consumed by the repository and the rewrap orchestrator.

Any backend works as long as it provides ``find_one``, a lazy ``cursor`` over
every record and per-record ``save``.
"""
import copy
import uuid
from collections.abc import AsyncIterator, Mapping
from typing import Any, Optional, Protocol, runtime_checkable


@runtime_checkable
class RecordStore(Protocol):
    """Minimal persistence capabilities required by navigator_pii."""

    name: str

    async def find_one(self, filter: Mapping[str, Any]) -> Optional[Any]:
        ...

    def cursor(self) -> AsyncIterator[Any]:
        ...

    async def save(self, record: Any) -> Any:
        ...


class MemoryRecordStore:
    """In-process record store keyed by ``_id``.

    Records are copied on every read and write, so callers only change
    stored data through ``save``. ``writes`` counts successful saves.
    """

    def __init__(self, name: str = "records", records: Optional[list[dict]] = None):
        self.name = name
        self._rows: dict[str, dict[str, Any]] = {}
        self.writes = 0
        for record in records or []:
            self._put(record)

    def _put(self, record: Mapping[str, Any]) -> dict[str, Any]:
        row = copy.deepcopy(dict(record))
        row.setdefault("_id", uuid.uuid4().hex)
        self._rows[row["_id"]] = row
        return row

    def __len__(self) -> int:
        return len(self._rows)

    def raw(self, record_id: str) -> dict[str, Any]:
        """Stored row exactly as persisted (a copy)."""
        return copy.deepcopy(self._rows[record_id])

    async def find_one(self, filter: Mapping[str, Any]) -> Optional[dict[str, Any]]:
        for row in self._rows.values():
            if all(row.get(k) == v for k, v in filter.items()):
                return copy.deepcopy(row)
        return None

    async def cursor(self) -> AsyncIterator[dict[str, Any]]:
        for record_id in list(self._rows):
            row = self._rows.get(record_id)
            if row is not None:
                yield copy.deepcopy(row)

    async def save(self, record: Mapping[str, Any]) -> dict[str, Any]:
        row = self._put(record)
        self.writes += 1
        return copy.deepcopy(row)
