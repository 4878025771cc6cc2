"""
Least-loaded auto-assignment for SupportDesk Chat.

Pairs the queue head with the available staff member carrying the fewest
chats (ties go to the lowest staff id). Safe to run concurrently: the head
is dequeued atomically and capacity is re-checked under the staff lock
when the assignment is recorded.
"""

import logging
from typing import List

from .errors import AlreadyQueued, CapacityExceeded, Conflict, NoStaffAvailable, QueueEmpty, StaffNotFound
from .ledger import AssignmentLedger
from .models import Assignment, QueueEntry, StaffMember
from .queue import ChatQueue
from .staff_directory import StaffDirectory

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2


def rank_candidates(candidates: List[StaffMember]) -> List[StaffMember]:
    """Least-loaded first, staff id as the deterministic tie-break."""
    return sorted(candidates, key=lambda s: (s.current_chat_count, s.id))


class AutoAssigner:
    """Matches queued sessions to available staff."""

    def __init__(self, queue: ChatQueue, directory: StaffDirectory, ledger: AssignmentLedger):
        self.queue = queue
        self.directory = directory
        self.ledger = ledger

    async def _put_back(self, entry: QueueEntry):
        try:
            await self.queue.requeue(entry)
        except AlreadyQueued:
            # Re-requested while we held it; the newer entry stands.
            logger.info(f"Session {entry.session_id} re-queued concurrently")

    async def assign_next(self) -> Assignment:
        """
        Assign the queue head.

        Raises QueueEmpty when nothing waits, NoStaffAvailable when the head
        could not be placed (it is back in the queue), and Conflict when the
        head was claimed manually in the meantime (it is dropped).
        """
        entry = await self.queue.dequeue_head()
        candidates = rank_candidates(await self.directory.list_available())
        if not candidates:
            await self._put_back(entry)
            raise NoStaffAvailable()

        for chosen in candidates[:MAX_ATTEMPTS]:
            try:
                assignment = await self.ledger.create(entry.session_id, chosen.id)
            except (CapacityExceeded, StaffNotFound) as e:
                logger.info(f"Candidate {chosen.id} unavailable for {entry.session_id}: {e}")
                continue
            except Conflict:
                logger.info(f"Session {entry.session_id} already claimed; dropping queue entry")
                raise
            logger.info(
                f"Auto-assigned {entry.session_id} to {chosen.id} "
                f"(load {chosen.current_chat_count}/{chosen.max_concurrent_chats})"
            )
            return assignment

        await self._put_back(entry)
        raise NoStaffAvailable()

    async def drain(self) -> List[Assignment]:
        """Assign queued sessions until the queue or the staff run out."""
        made: List[Assignment] = []
        while True:
            try:
                made.append(await self.assign_next())
            except (QueueEmpty, NoStaffAvailable):
                return made
            except Conflict:
                continue

    async def assign_to(self, session_id: str, staff_id: str) -> Assignment:
        """Manual assignment of a specific session to a specific staff member."""
        await self.directory.require(staff_id)
        return await self.ledger.create(session_id, staff_id)
