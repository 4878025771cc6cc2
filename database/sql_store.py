"""
SQL-backed RecordStore for SupportDesk Chat.

Implements the RecordStore protocol on the `records` table.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import StoredRecord
from .store import Record

logger = logging.getLogger(__name__)


class SqlRecordStore:
    """Persistent record store; one short transaction per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, namespace: str, key: str) -> Optional[Record]:
        async with self._session_factory() as session:
            row = await session.get(StoredRecord, (namespace, key))
            return dict(row.payload) if row else None

    async def put(self, namespace: str, key: str, record: Record) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(StoredRecord, (namespace, key))
                if row:
                    row.payload = dict(record)
                    row.updated_at = datetime.utcnow()
                else:
                    session.add(StoredRecord(namespace=namespace, key=key, payload=dict(record)))

    async def delete(self, namespace: str, key: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(StoredRecord)
                    .where(StoredRecord.namespace == namespace)
                    .where(StoredRecord.key == key)
                )
                return (result.rowcount or 0) > 0

    async def scan(self, namespace: str) -> List[Record]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoredRecord).where(StoredRecord.namespace == namespace)
            )
            return [dict(row.payload) for row in result.scalars().all()]
