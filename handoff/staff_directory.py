"""
Staff Directory for SupportDesk Chat.

Owns staff identity, presence and chat load. Load changes for a staff
member are serialized by that member's lock; moves between two members
take both locks in id order.
"""

import logging
import uuid
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from typing import Callable, List, Optional

from database.store import RecordStore

from .errors import CapacityExceeded, StaffNotFound, TransferRollbackFailed
from .locks import KeyedLocks
from .models import StaffMember, StaffRole, StaffStatus

logger = logging.getLogger(__name__)

NAMESPACE = "staff"


class StaffDirectory:
    """Staff records plus their live chat counts."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.utcnow):
        self._store = store
        self._clock = clock
        self._locks = KeyedLocks()

    @asynccontextmanager
    async def _locked(self, *staff_ids: str):
        """Hold the locks for the given staff, lowest id first."""
        async with AsyncExitStack() as stack:
            for staff_id in sorted(set(staff_ids)):
                await stack.enter_async_context(self._locks.hold(staff_id))
            yield

    async def _save(self, staff: StaffMember):
        await self._store.put(NAMESPACE, staff.id, staff.to_record())

    # ── Lookup ─────────────────────────────────────────────────────

    async def get(self, staff_id: str) -> Optional[StaffMember]:
        record = await self._store.get(NAMESPACE, staff_id)
        return StaffMember.from_record(record) if record else None

    async def require(self, staff_id: str) -> StaffMember:
        staff = await self.get(staff_id)
        if not staff:
            raise StaffNotFound(f"Staff member {staff_id} not found")
        return staff

    async def find_by_email(self, email: str) -> Optional[StaffMember]:
        email = email.lower()
        for staff in await self.list_all():
            if staff.email.lower() == email:
                return staff
        return None

    async def list_all(self) -> List[StaffMember]:
        records = await self._store.scan(NAMESPACE)
        return sorted((StaffMember.from_record(r) for r in records), key=lambda s: s.id)

    async def list_online(self) -> List[StaffMember]:
        return [s for s in await self.list_all() if s.status == StaffStatus.ONLINE]

    async def list_available(self) -> List[StaffMember]:
        """Online staff below their chat ceiling; the auto-assignment pool."""
        return [s for s in await self.list_all() if s.is_available]

    # ── Administration ─────────────────────────────────────────────

    async def provision(
        self,
        email: str,
        name: str,
        password_hash: str,
        role: StaffRole = StaffRole.AGENT,
        max_concurrent_chats: int = 5,
        staff_id: Optional[str] = None,
    ) -> StaffMember:
        if max_concurrent_chats < 0:
            raise ValueError("max_concurrent_chats must be >= 0")
        if await self.find_by_email(email):
            raise ValueError(f"Staff email already registered: {email}")

        now = self._clock()
        staff = StaffMember(
            id=staff_id or str(uuid.uuid4()),
            email=email,
            name=name,
            role=role,
            status=StaffStatus.OFFLINE,
            max_concurrent_chats=max_concurrent_chats,
            current_chat_count=0,
            created_at=now,
            last_active=now,
            password_hash=password_hash,
        )
        await self._save(staff)
        logger.info(f"Staff provisioned: {staff.name} ({staff.id}, {staff.role.value})")
        return staff

    async def remove(self, staff_id: str) -> bool:
        async with self._locked(staff_id):
            removed = await self._store.delete(NAMESPACE, staff_id)
        if removed:
            logger.info(f"Staff removed: {staff_id}")
        return removed

    # ── Presence ───────────────────────────────────────────────────

    async def set_status(self, staff_id: str, status: StaffStatus) -> StaffMember:
        async with self._locked(staff_id):
            staff = await self.require(staff_id)
            previous = staff.status
            staff.status = StaffStatus(status)
            staff.last_active = self._clock()
            await self._save(staff)
        if previous != staff.status:
            logger.info(f"Staff {staff_id} status: {previous.value} -> {staff.status.value}")
        return staff

    async def touch(self, staff_id: str) -> None:
        async with self._locked(staff_id):
            staff = await self.get(staff_id)
            if staff:
                staff.last_active = self._clock()
                await self._save(staff)

    # ── Load ───────────────────────────────────────────────────────

    async def _increment(self, staff_id: str) -> StaffMember:
        staff = await self.require(staff_id)
        if staff.current_chat_count >= staff.max_concurrent_chats:
            raise CapacityExceeded(
                f"Staff member {staff_id} at maximum capacity "
                f"({staff.current_chat_count}/{staff.max_concurrent_chats})"
            )
        staff.current_chat_count += 1
        staff.last_active = self._clock()
        await self._save(staff)
        return staff

    async def _decrement(self, staff_id: str) -> Optional[StaffMember]:
        staff = await self.get(staff_id)
        if not staff:
            # Staff deleted since assignment; the release is already satisfied.
            return None
        staff.current_chat_count = max(0, staff.current_chat_count - 1)
        staff.last_active = self._clock()
        await self._save(staff)
        return staff

    async def increment_load(self, staff_id: str) -> StaffMember:
        async with self._locked(staff_id):
            return await self._increment(staff_id)

    async def decrement_load(self, staff_id: str) -> Optional[StaffMember]:
        async with self._locked(staff_id):
            return await self._decrement(staff_id)

    async def move_load(self, from_staff_id: str, to_staff_id: str) -> None:
        """
        Move one chat of load between staff members.

        Decrements the source then increments the target. If the increment
        fails the source decrement is undone; if that undo fails too the
        operation raises TransferRollbackFailed.
        """
        async with self._locked(from_staff_id, to_staff_id):
            await self.require(to_staff_id)
            source = await self.get(from_staff_id)
            await self._decrement(from_staff_id)
            try:
                await self._increment(to_staff_id)
            except Exception:
                try:
                    if source:
                        await self._save(source)
                except Exception as rollback_error:
                    logger.error(
                        f"Load rollback failed for {from_staff_id} "
                        f"(transfer to {to_staff_id}): {rollback_error}"
                    )
                    raise TransferRollbackFailed() from rollback_error
                raise
