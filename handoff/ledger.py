"""
Assignment Ledger for SupportDesk Chat.

Records which staff member owns which session:

    assigned -> active -> completed
        \\__________________/

Transfer rewrites staff_id/assigned_at in place and never completes the
assignment. Each session's operations are serialized by its own lock;
load changes go through the StaffDirectory so counts and ownership move
together.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from database.store import RecordStore

from .errors import AssignmentNotFound, Conflict, Mismatch, TransferRollbackFailed
from .locks import KeyedLocks
from .models import Assignment, AssignmentStatus
from .queue import ChatQueue
from .staff_directory import StaffDirectory

logger = logging.getLogger(__name__)

NAMESPACE = "assignments"


class AssignmentLedger:
    """Owns Assignment records; at most one open assignment per session."""

    def __init__(
        self,
        store: RecordStore,
        directory: StaffDirectory,
        queue: ChatQueue,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._store = store
        self._directory = directory
        self._queue = queue
        self._clock = clock
        self._locks = KeyedLocks()

    async def _save(self, assignment: Assignment):
        await self._store.put(NAMESPACE, assignment.session_id, assignment.to_record())

    async def get(self, session_id: str) -> Optional[Assignment]:
        record = await self._store.get(NAMESPACE, session_id)
        return Assignment.from_record(record) if record else None

    async def get_open(self, session_id: str) -> Optional[Assignment]:
        assignment = await self.get(session_id)
        return assignment if assignment and assignment.is_open else None

    async def all(self) -> List[Assignment]:
        records = await self._store.scan(NAMESPACE)
        return sorted((Assignment.from_record(r) for r in records), key=lambda a: a.assigned_at)

    async def open_assignments(self) -> List[Assignment]:
        return [a for a in await self.all() if a.is_open]

    async def for_staff(self, staff_id: str, include_completed: bool = False) -> List[Assignment]:
        return [
            a for a in await self.all()
            if a.staff_id == staff_id and (include_completed or a.is_open)
        ]

    async def create(self, session_id: str, staff_id: str) -> Assignment:
        """
        Assign a session to a staff member.

        Idempotent for the current owner. Raises Conflict if another staff
        member owns the session and CapacityExceeded/StaffNotFound from the
        directory; in those cases nothing is recorded.
        """
        async with self._locks.hold(session_id):
            existing = await self.get(session_id)
            if existing and existing.is_open:
                if existing.staff_id != staff_id:
                    raise Conflict(
                        f"Session {session_id} is already assigned to {existing.staff_id}"
                    )
                await self._queue.remove(session_id)
                return existing

            await self._directory.increment_load(staff_id)
            assignment = Assignment(
                session_id=session_id,
                staff_id=staff_id,
                assigned_at=self._clock(),
                status=AssignmentStatus.ASSIGNED,
            )
            try:
                await self._save(assignment)
            except Exception:
                await self._directory.decrement_load(staff_id)
                raise
            await self._queue.remove(session_id)

        logger.info(f"Session {session_id} assigned to staff {staff_id}")
        return assignment

    async def activate(self, session_id: str, staff_id: str) -> Optional[Assignment]:
        """Mark assigned -> active on the owner's first message."""
        async with self._locks.hold(session_id):
            assignment = await self.get(session_id)
            if not assignment or assignment.staff_id != staff_id:
                return None
            if assignment.status == AssignmentStatus.ASSIGNED:
                assignment.status = AssignmentStatus.ACTIVE
                await self._save(assignment)
            return assignment

    async def transfer(
        self, session_id: str, from_staff_id: str, to_staff_id: str
    ) -> Tuple[Assignment, bool]:
        """
        Move an open assignment to another staff member.

        Returns (assignment, changed). A completed assignment is returned
        unchanged with changed=False. If the new owner cannot be recorded
        the load move is reversed; a failed reversal raises
        TransferRollbackFailed.
        """
        async with self._locks.hold(session_id):
            assignment = await self.get(session_id)
            if not assignment:
                raise AssignmentNotFound(f"No assignment for session {session_id}")
            if not assignment.is_open:
                return assignment, False
            if assignment.staff_id != from_staff_id:
                raise Mismatch(
                    f"Session {session_id} is assigned to {assignment.staff_id}, not {from_staff_id}"
                )
            if from_staff_id == to_staff_id:
                raise Conflict("Cannot transfer a chat to its current owner")

            await self._directory.move_load(from_staff_id, to_staff_id)
            previous = Assignment.from_record(assignment.to_record())
            assignment.staff_id = to_staff_id
            assignment.assigned_at = self._clock()
            assignment.status = AssignmentStatus.ASSIGNED
            try:
                await self._save(assignment)
            except Exception:
                try:
                    await self._directory.move_load(to_staff_id, from_staff_id)
                    await self._save(previous)
                except Exception as rollback_error:
                    logger.error(
                        f"Transfer rollback failed for {session_id} "
                        f"({from_staff_id} -> {to_staff_id}): {rollback_error}"
                    )
                    raise TransferRollbackFailed() from rollback_error
                raise

        logger.info(f"Session {session_id} transferred: {from_staff_id} -> {to_staff_id}")
        return assignment, True

    async def complete(self, session_id: str) -> Tuple[Assignment, bool]:
        """
        Complete an assignment and release the staff member's capacity.

        Returns (assignment, changed); repeat calls are no-ops.
        """
        async with self._locks.hold(session_id):
            assignment = await self.get(session_id)
            if not assignment:
                raise AssignmentNotFound(f"No assignment for session {session_id}")
            if not assignment.is_open:
                return assignment, False

            assignment.status = AssignmentStatus.COMPLETED
            assignment.completed_at = self._clock()
            await self._save(assignment)
            await self._directory.decrement_load(assignment.staff_id)

        logger.info(f"Session {session_id} completed by staff {assignment.staff_id}")
        return assignment, True
