"""
WebSocket Connection Manager for SupportDesk Chat.

Tracks live connections by role and fans events out to staff and customers.
Every frame is `{"event": <name>, "data": {...}}`.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from handoff.errors import InvalidRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unauthenticated:
    pass


@dataclass(frozen=True)
class StaffIdentity:
    staff_id: str


@dataclass(frozen=True)
class CustomerIdentity:
    session_id: str


ConnectionRole = Union[Unauthenticated, StaffIdentity, CustomerIdentity]


@dataclass(eq=False)
class Connection:
    """
    One live client.

    `transport` is anything with an async `send_json` (a starlette WebSocket
    in production). The role starts unauthenticated and can be bound once.
    """
    transport: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    role: ConnectionRole = field(default_factory=Unauthenticated)

    @property
    def staff_id(self) -> Optional[str]:
        return self.role.staff_id if isinstance(self.role, StaffIdentity) else None

    @property
    def session_id(self) -> Optional[str]:
        return self.role.session_id if isinstance(self.role, CustomerIdentity) else None

    def bind(self, role: Union[StaffIdentity, CustomerIdentity]):
        if not isinstance(self.role, Unauthenticated):
            raise InvalidRole("Connection role is already set; reconnect to change it")
        self.role = role


class ConnectionManager:
    """
    Manages live connections: the staff room and per-session customers.

    A staff member or a session may have several connections (tabs); events
    go to all of them.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._staff: Dict[str, List[Connection]] = {}
        self._customers: Dict[str, List[Connection]] = {}

    def register(self, connection: Connection):
        self._connections[connection.id] = connection
        logger.info(f"WS connected: {connection.id} (total: {self.active_count})")

    def bind_staff(self, connection: Connection, staff_id: str):
        connection.bind(StaffIdentity(staff_id))
        self._staff.setdefault(staff_id, []).append(connection)

    def bind_customer(self, connection: Connection, session_id: str):
        connection.bind(CustomerIdentity(session_id))
        self._customers.setdefault(session_id, []).append(connection)

    def unregister(self, connection: Connection):
        """Drop every mapping held by this connection."""
        self._connections.pop(connection.id, None)

        self._discard(self._staff, connection.staff_id, connection)
        self._discard(self._customers, connection.session_id, connection)

    @staticmethod
    def _discard(rooms: Dict[str, List[Connection]], key: Optional[str], connection: Connection):
        if key not in rooms:
            return
        rooms[key] = [c for c in rooms[key] if c is not connection]
        if not rooms[key]:
            del rooms[key]

    async def send(self, connection: Connection, event: str, data: Dict[str, Any]) -> bool:
        """Send one frame; a dead transport is unregistered instead of raising."""
        try:
            await connection.transport.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            logger.warning(f"Dropping dead connection {connection.id}: {e}")
            self.unregister(connection)
            return False

    async def _send_all(self, connections: List[Connection], event: str, data: Dict[str, Any]) -> int:
        delivered = 0
        for connection in list(connections):
            if await self.send(connection, event, data):
                delivered += 1
        return delivered

    async def send_to_staff(self, staff_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Send to every connection of a staff member; False if none took it."""
        return await self._send_all(self._staff.get(staff_id, []), event, data) > 0

    async def send_to_session(self, session_id: str, event: str, data: Dict[str, Any]) -> int:
        """Send to every customer connection joined to a session."""
        return await self._send_all(self._customers.get(session_id, []), event, data)

    async def broadcast_to_staff(
        self,
        event: str,
        data: Dict[str, Any],
        exclude_staff_id: Optional[str] = None,
    ):
        for staff_id, connections in list(self._staff.items()):
            if staff_id != exclude_staff_id:
                await self._send_all(connections, event, data)

    def is_staff_connected(self, staff_id: str) -> bool:
        return bool(self._staff.get(staff_id))

    def is_session_connected(self, session_id: str) -> bool:
        return bool(self._customers.get(session_id))

    @property
    def active_count(self) -> int:
        return len(self._connections)

    @property
    def staff_count(self) -> int:
        return len(self._staff)
