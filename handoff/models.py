"""
Hand-off domain models.

Staff members, queue entries and assignments are plain dataclasses that
serialize to JSON-friendly records so any RecordStore can hold them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class StaffRole(str, Enum):
    """Authorization tier. Not used for routing."""
    AGENT = "agent"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


class StaffStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"
    AWAY = "away"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return PRIORITY_RANK[self]


PRIORITY_RANK = {Priority.HIGH: 3, Priority.MEDIUM: 2, Priority.LOW: 1}


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    WAITING_FOR_STAFF = "waiting_for_staff"
    WITH_STAFF = "with_staff"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


@dataclass
class StaffMember:
    """A support staff member and their live chat load."""
    id: str
    email: str
    name: str
    role: StaffRole = StaffRole.AGENT
    status: StaffStatus = StaffStatus.OFFLINE
    max_concurrent_chats: int = 5
    current_chat_count: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_active: datetime = field(default_factory=datetime.utcnow)
    password_hash: str = field(default="", repr=False)

    @property
    def has_capacity(self) -> bool:
        return self.current_chat_count < self.max_concurrent_chats

    @property
    def is_available(self) -> bool:
        return self.status == StaffStatus.ONLINE and self.has_capacity

    def to_record(self) -> Dict[str, Any]:
        record = self.to_public()
        record["password_hash"] = self.password_hash
        return record

    def to_public(self) -> Dict[str, Any]:
        """Client-facing view; never includes the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value,
            "maxConcurrentChats": self.max_concurrent_chats,
            "currentChatCount": self.current_chat_count,
            "createdAt": _iso(self.created_at),
            "lastActive": _iso(self.last_active),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StaffMember":
        return cls(
            id=record["id"],
            email=record["email"],
            name=record["name"],
            role=StaffRole(record["role"]),
            status=StaffStatus(record["status"]),
            max_concurrent_chats=record["maxConcurrentChats"],
            current_chat_count=record["currentChatCount"],
            created_at=_parse(record.get("createdAt")) or datetime.utcnow(),
            last_active=_parse(record.get("lastActive")) or datetime.utcnow(),
            password_hash=record.get("password_hash", ""),
        )


@dataclass
class QueueEntry:
    """A session waiting for a human. Wait time is derived, never stored."""
    session_id: str
    priority: Priority
    enqueued_at: datetime
    sequence: int = 0
    customer_info: Optional[Dict[str, Any]] = None
    last_message: Optional[str] = None

    def sort_key(self):
        return (-self.priority.rank, self.enqueued_at, self.sequence)

    def wait_seconds(self, now: datetime) -> int:
        return max(0, int((now - self.enqueued_at).total_seconds()))

    def to_record(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "priority": self.priority.value,
            "enqueuedAt": _iso(self.enqueued_at),
            "sequence": self.sequence,
            "customerInfo": self.customer_info,
            "lastMessage": self.last_message,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "QueueEntry":
        return cls(
            session_id=record["sessionId"],
            priority=Priority(record["priority"]),
            enqueued_at=_parse(record["enqueuedAt"]),
            sequence=record.get("sequence", 0),
            customer_info=record.get("customerInfo"),
            last_message=record.get("lastMessage"),
        )


@dataclass
class Assignment:
    """Ownership of a session by a staff member."""
    session_id: str
    staff_id: str
    assigned_at: datetime = field(default_factory=datetime.utcnow)
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    completed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status != AssignmentStatus.COMPLETED

    def to_record(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "staffId": self.staff_id,
            "assignedAt": _iso(self.assigned_at),
            "status": self.status.value,
            "completedAt": _iso(self.completed_at),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Assignment":
        return cls(
            session_id=record["sessionId"],
            staff_id=record["staffId"],
            assigned_at=_parse(record["assignedAt"]),
            status=AssignmentStatus(record["status"]),
            completed_at=_parse(record.get("completedAt")),
        )
