"""
RecordStore protocol for SupportDesk Chat.

Abstracts record storage so the queue, staff directory, assignment ledger
and session store work with either in-memory dicts or a database backend.
"""

import copy
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

Record = Dict[str, Any]


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for namespaced record persistence."""

    async def get(self, namespace: str, key: str) -> Optional[Record]:
        """Get a record, or None if absent."""
        ...

    async def put(self, namespace: str, key: str, record: Record) -> None:
        """Insert or replace a record."""
        ...

    async def delete(self, namespace: str, key: str) -> bool:
        """Delete a record. Returns False if it was absent."""
        ...

    async def scan(self, namespace: str) -> List[Record]:
        """Return every record in a namespace."""
        ...


class InMemoryRecordStore:
    """Process-lifetime store. Records are copied in and out."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Record]] = {}

    async def get(self, namespace: str, key: str) -> Optional[Record]:
        record = self._data.get(namespace, {}).get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, namespace: str, key: str, record: Record) -> None:
        self._data.setdefault(namespace, {})[key] = copy.deepcopy(record)

    async def delete(self, namespace: str, key: str) -> bool:
        return self._data.get(namespace, {}).pop(key, None) is not None

    async def scan(self, namespace: str) -> List[Record]:
        return [copy.deepcopy(r) for r in self._data.get(namespace, {}).values()]

    def count(self, namespace: str) -> int:
        return len(self._data.get(namespace, {}))
