"""
Chat queue for SupportDesk Chat.

Sessions waiting for a human, ordered by priority (high first) and then
by enqueue time (oldest first). All mutations hold the queue-wide lock.
"""

import asyncio
import itertools
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from database.store import RecordStore

from .errors import AlreadyQueued, QueueEmpty
from .models import Priority, QueueEntry

logger = logging.getLogger(__name__)

NAMESPACE = "queue"


class ChatQueue:
    """Priority queue of sessions requesting human help."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.utcnow):
        self._store = store
        self._clock = clock
        self._lock = asyncio.Lock()
        self._sequence = itertools.count(1)

    async def _entries(self) -> List[QueueEntry]:
        records = await self._store.scan(NAMESPACE)
        return sorted((QueueEntry.from_record(r) for r in records), key=QueueEntry.sort_key)

    async def enqueue(
        self,
        session_id: str,
        priority: Priority = Priority.MEDIUM,
        customer_info: Optional[Dict[str, Any]] = None,
        last_message: Optional[str] = None,
    ) -> QueueEntry:
        async with self._lock:
            if await self._store.get(NAMESPACE, session_id):
                raise AlreadyQueued(f"Session {session_id} is already queued")
            entry = QueueEntry(
                session_id=session_id,
                priority=Priority(priority),
                enqueued_at=self._clock(),
                sequence=next(self._sequence),
                customer_info=customer_info,
                last_message=last_message,
            )
            await self._store.put(NAMESPACE, session_id, entry.to_record())
        logger.info(f"Queued session {session_id} ({entry.priority.value})")
        return entry

    async def dequeue_head(self) -> QueueEntry:
        """Remove and return the highest-priority, oldest entry."""
        async with self._lock:
            entries = await self._entries()
            if not entries:
                raise QueueEmpty()
            head = entries[0]
            await self._store.delete(NAMESPACE, head.session_id)
        return head

    async def requeue(self, entry: QueueEntry) -> None:
        """Put back a dequeued entry at its original position."""
        async with self._lock:
            if await self._store.get(NAMESPACE, entry.session_id):
                raise AlreadyQueued(f"Session {entry.session_id} is already queued")
            await self._store.put(NAMESPACE, entry.session_id, entry.to_record())

    async def remove(self, session_id: str) -> bool:
        async with self._lock:
            removed = await self._store.delete(NAMESPACE, session_id)
        if removed:
            logger.info(f"Removed session {session_id} from queue")
        return removed

    async def contains(self, session_id: str) -> bool:
        return await self._store.get(NAMESPACE, session_id) is not None

    async def position(self, session_id: str) -> Optional[int]:
        """1-based place in line, or None if not queued."""
        for index, entry in enumerate(await self._entries(), start=1):
            if entry.session_id == session_id:
                return index
        return None

    async def length(self) -> int:
        return len(await self._store.scan(NAMESPACE))

    async def snapshot(self) -> List[Dict[str, Any]]:
        """Ordered entries with computed wait time; read-only view."""
        now = self._clock()
        return [
            {
                "sessionId": e.session_id,
                "priority": e.priority.value,
                "waitTime": e.wait_seconds(now),
                "customerInfo": e.customer_info,
                "lastMessage": e.last_message,
                "createdAt": e.enqueued_at.isoformat(),
            }
            for e in await self._entries()
        ]

    async def stats(self) -> Dict[str, Any]:
        entries = await self._entries()
        now = self._clock()
        breakdown = {p.value: 0 for p in (Priority.HIGH, Priority.MEDIUM, Priority.LOW)}
        for entry in entries:
            breakdown[entry.priority.value] += 1
        average = (
            int(sum((now - e.enqueued_at).total_seconds() for e in entries) / len(entries))
            if entries else 0
        )
        return {
            "length": len(entries),
            "averageWaitTime": max(0, average),
            "priorityBreakdown": breakdown,
        }
