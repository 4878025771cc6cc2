"""
Session store for SupportDesk Chat.

Owns conversation sessions and their message history. The hand-off layer
drives the status field; everything else here is plain storage.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from database.store import RecordStore
from handoff.errors import SessionNotFound
from handoff.locks import KeyedLocks
from handoff.models import SessionStatus

NAMESPACE = "sessions"


@dataclass
class ChatMessage:
    id: str
    session_id: str
    content: str
    role: str  # user, assistant, system
    timestamp: datetime = field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "content": self.content,
            "role": self.role,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            session_id=data["sessionId"],
            content=data["content"],
            role=data["role"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


@dataclass
class ConversationSession:
    id: str
    status: SessionStatus = SessionStatus.ACTIVE
    customer_info: Optional[Dict[str, Any]] = None
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    assigned_staff: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "customerInfo": self.customer_info,
            "messages": [m.to_dict() for m in self.messages],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "assignedStaff": self.assigned_staff,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationSession":
        return cls(
            id=data["id"],
            status=SessionStatus(data["status"]),
            customer_info=data.get("customerInfo"),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            created_at=datetime.fromisoformat(data["createdAt"]),
            updated_at=datetime.fromisoformat(data["updatedAt"]),
            assigned_staff=data.get("assignedStaff"),
            metadata=data.get("metadata") or {},
        )


@runtime_checkable
class SessionStore(Protocol):
    """Protocol for conversation session persistence."""

    async def get_session(self, session_id: str) -> Optional[ConversationSession]:
        ...

    async def add_message(
        self,
        session_id: str,
        content: str,
        role: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        ...

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        assigned_staff: Optional[str] = None,
    ) -> ConversationSession:
        ...


class RecordSessionStore:
    """SessionStore on top of a RecordStore."""

    SENDER_LABELS = {"user": "Customer", "assistant": "Assistant", "system": "System"}

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.utcnow):
        self._store = store
        self._clock = clock
        self._locks = KeyedLocks()

    async def _save(self, session: ConversationSession):
        session.updated_at = self._clock()
        await self._store.put(NAMESPACE, session.id, session.to_dict())

    async def create_session(
        self,
        customer_info: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        now = self._clock()
        session = ConversationSession(
            id=str(uuid.uuid4()),
            customer_info=customer_info,
            created_at=now,
            updated_at=now,
            metadata=metadata or {},
        )
        await self._save(session)
        return session

    async def get_session(self, session_id: str) -> Optional[ConversationSession]:
        data = await self._store.get(NAMESPACE, session_id)
        return ConversationSession.from_dict(data) if data else None

    async def require_session(self, session_id: str) -> ConversationSession:
        session = await self.get_session(session_id)
        if not session:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    async def get_or_create_session(
        self,
        session_id: Optional[str] = None,
        customer_info: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        if session_id:
            existing = await self.get_session(session_id)
            if existing:
                return existing
        return await self.create_session(customer_info)

    async def list_sessions(self) -> List[ConversationSession]:
        return [ConversationSession.from_dict(d) for d in await self._store.scan(NAMESPACE)]

    async def add_message(
        self,
        session_id: str,
        content: str,
        role: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        async with self._locks.hold(session_id):
            session = await self.require_session(session_id)
            message = ChatMessage(
                id=str(uuid.uuid4()),
                session_id=session_id,
                content=content,
                role=role,
                timestamp=self._clock(),
                metadata=metadata or {},
            )
            session.messages.append(message)
            await self._save(session)
        return message

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        assigned_staff: Optional[str] = None,
    ) -> ConversationSession:
        async with self._locks.hold(session_id):
            session = await self.require_session(session_id)
            session.status = SessionStatus(status)
            session.assigned_staff = assigned_staff
            await self._save(session)
        return session

    async def get_history(self, session_id: str, limit: int = 10) -> List[str]:
        """Recent messages as 'role: content' lines for retrieval context."""
        session = await self.get_session(session_id)
        if not session:
            return []
        return [f"{m.role}: {m.content}" for m in session.messages[-limit:]]

    async def export_transcript(self, session_id: str) -> str:
        session = await self.require_session(session_id)
        info = session.customer_info or {}

        lines = [f"Chat Session: {session.id}", f"Started: {session.created_at.isoformat()}"]
        if info.get("name"):
            lines.append(f"Customer: {info['name']}")
        if info.get("email"):
            lines.append(f"Email: {info['email']}")
        lines.append(f"Status: {session.status.value}")
        lines.extend(["", "--- Conversation ---", ""])

        for message in session.messages:
            sender = self.SENDER_LABELS.get(message.role, message.role)
            if message.role == "assistant" and message.metadata.get("staffId"):
                sender = "Support Agent"
            lines.append(f"[{message.timestamp.isoformat()}] {sender}:")
            lines.append(message.content)
            lines.append("")
        return "\n".join(lines)

    async def stats(self) -> Dict[str, int]:
        sessions = await self.list_sessions()
        counts = {status.value: 0 for status in SessionStatus}
        for session in sessions:
            counts[session.status.value] += 1
        return {"total": len(sessions), **counts}
