"""
Real-time Coordinator for SupportDesk Chat.

Routes customer and staff traffic between live connections, the AI
responder and the hand-off components (StaffDirectory, ChatQueue,
AssignmentLedger, AutoAssigner). Socket commands and HTTP routes both
end up in the operations below, so the two surfaces stay consistent.

Customer messages for one session are handled one at a time. The AI call
happens outside every queue/ledger lock and the session status is read
again afterwards: once a human owns the chat, the AI reply is kept for
the transcript but never delivered.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from api.middleware.auth import AuthenticationError, StaffAuthenticator
from api.middleware.metrics import (
    record_ai_failure, record_ai_latency, record_assignment, record_completion,
    record_escalation, record_queue_length, record_transfer,
)
from handoff import (
    AlreadyQueued, Assignment, AssignmentLedger, AssignmentNotFound, AutoAssigner,
    ChatQueue, Conflict, EscalationDetector, EscalationTrigger, HandoffError,
    InvalidRole, Mismatch, Priority, SessionStatus, StaffDirectory, StaffMember,
    StaffNotFound, StaffStatus,
)
from handoff.locks import KeyedLocks
from llm.conversation_store import ChatMessage, ConversationSession, RecordSessionStore
from llm.responder import Responder
from retrieval.knowledge_base import KnowledgeBase

from .commands import (
    AssignChat, Command, CompleteChat, CustomerJoin, RequestStaff, SendMessage,
    StaffAuthenticate, StaffStatusUpdate, TransferChat, TypingStart, TypingStop,
)
from .connection_manager import Connection, ConnectionManager

logger = logging.getLogger(__name__)

STAFF_JOINED_MESSAGE = "A support agent has joined the chat"
ALREADY_WITH_STAFF_MESSAGE = "You are already connected with a support agent."
TRANSFERRED_MESSAGE = "Your chat has been transferred to another agent"
COMPLETED_MESSAGE = "This chat has been marked as resolved"
QUEUED_MESSAGE = "You have been added to the support queue. An agent will be with you shortly."
ESCALATING_MESSAGE = "Let me connect you with a member of our support team."
APOLOGY_MESSAGE = "Sorry, I encountered an error processing your message. Please try again."

HISTORY_FOR_RETRIEVAL = 5


@dataclass
class MessageOutcome:
    """Result of one customer message."""
    message: ChatMessage
    reply: Optional[ChatMessage] = None
    escalated: bool = False


class Coordinator:
    """Orchestrates the hand-off components over live connections."""

    def __init__(
        self,
        directory: StaffDirectory,
        queue: ChatQueue,
        ledger: AssignmentLedger,
        assigner: AutoAssigner,
        sessions: RecordSessionStore,
        responder: Responder,
        knowledge: KnowledgeBase,
        connections: ConnectionManager,
        authenticator: StaffAuthenticator,
        detector: EscalationDetector,
        ai_timeout_seconds: float = 30.0,
        escalate_on_ai_failure: bool = False,
        default_priority: Priority = Priority.MEDIUM,
        dequeue_on_customer_disconnect: bool = False,
    ):
        self.directory = directory
        self.queue = queue
        self.ledger = ledger
        self.assigner = assigner
        self.sessions = sessions
        self.responder = responder
        self.knowledge = knowledge
        self.connections = connections
        self.authenticator = authenticator
        self.detector = detector
        self.ai_timeout_seconds = ai_timeout_seconds
        self.escalate_on_ai_failure = escalate_on_ai_failure
        self.default_priority = Priority(default_priority)
        self.dequeue_on_customer_disconnect = dequeue_on_customer_disconnect

        self._message_locks = KeyedLocks()
        self._handlers: Dict[Type[Command], Callable[[Connection, Any], Awaitable[None]]] = {
            StaffAuthenticate: self._on_staff_authenticate,
            CustomerJoin: self._on_customer_join,
            StaffStatusUpdate: self._on_staff_status_update,
            SendMessage: self._on_send_message,
            TypingStart: self._on_typing_start,
            TypingStop: self._on_typing_stop,
            AssignChat: self._on_assign_chat,
            TransferChat: self._on_transfer_chat,
            CompleteChat: self._on_complete_chat,
            RequestStaff: self._on_request_staff,
        }

    # ── Dispatch ───────────────────────────────────────────────────

    async def dispatch(self, connection: Connection, command: Command):
        """Run the single handler registered for this command type."""
        if command.staff_only and not connection.staff_id:
            await self.connections.send(connection, "error", {"error": InvalidRole().message})
            return
        await self._handlers[type(command)](connection, command)

    async def _on_staff_authenticate(self, connection: Connection, command: StaffAuthenticate):
        try:
            await self.authenticate_staff(connection, command.token)
        except AuthenticationError as e:
            logger.warning(f"Socket authentication failed: {e}")
            await self.connections.send(connection, "authentication_failed", {"error": "Invalid token"})
        except InvalidRole as e:
            await self.connections.send(connection, "authentication_failed", {"error": e.message})

    async def _on_customer_join(self, connection: Connection, command: CustomerJoin):
        try:
            await self.join_customer(connection, command.session_id)
        except HandoffError as e:
            await self.connections.send(connection, "join_failed", {"error": e.message})

    async def _on_staff_status_update(self, connection: Connection, command: StaffStatusUpdate):
        try:
            await self.set_staff_status(connection.staff_id, command.status)
        except HandoffError as e:
            await self.connections.send(connection, "error", {"error": e.message})

    async def _on_send_message(self, connection: Connection, command: SendMessage):
        try:
            if command.role == "staff":
                if not connection.staff_id:
                    raise InvalidRole()
                await self.handle_staff_message(connection.staff_id, command.session_id, command.message)
            else:
                if connection.session_id != command.session_id:
                    raise InvalidRole()
                await self.handle_customer_message(command.session_id, command.message)
        except HandoffError as e:
            await self.connections.send(connection, "message_failed", {"error": e.message})

    async def _on_typing_start(self, connection: Connection, command: TypingStart):
        await self._typing_or_error(connection, command.session_id, True)

    async def _on_typing_stop(self, connection: Connection, command: TypingStop):
        await self._typing_or_error(connection, command.session_id, False)

    async def _typing_or_error(self, connection: Connection, session_id: str, is_typing: bool):
        try:
            await self.typing(connection, session_id, is_typing)
        except HandoffError as e:
            await self.connections.send(connection, "error", {"error": e.message})

    async def _on_assign_chat(self, connection: Connection, command: AssignChat):
        try:
            await self.assign_chat(command.session_id, command.staff_id, requested_by=connection.staff_id)
        except HandoffError as e:
            await self.connections.send(connection, "assignment_failed", {"error": e.message})

    async def _on_transfer_chat(self, connection: Connection, command: TransferChat):
        try:
            await self.transfer_chat(command.session_id, connection.staff_id, command.to_staff_id)
        except HandoffError as e:
            await self.connections.send(connection, "transfer_failed", {"error": e.message})

    async def _on_complete_chat(self, connection: Connection, command: CompleteChat):
        try:
            await self.complete_chat(command.session_id, requested_by=connection.staff_id)
        except HandoffError as e:
            await self.connections.send(connection, "completion_failed", {"error": e.message})

    async def _on_request_staff(self, connection: Connection, command: RequestStaff):
        try:
            if not connection.staff_id and connection.session_id != command.session_id:
                raise InvalidRole()
            await self.request_staff(command.session_id, command.priority)
        except HandoffError as e:
            await self.connections.send(connection, "queue_failed", {"error": e.message})

    # ── Connections ────────────────────────────────────────────────

    async def authenticate_staff(self, connection: Connection, token: str) -> StaffMember:
        """Bind a connection to the staff member behind a token."""
        staff = await self.authenticator.verify(token)
        self.connections.bind_staff(connection, staff.id)

        came_online = staff.status == StaffStatus.OFFLINE
        if came_online:
            staff = await self.directory.set_status(staff.id, StaffStatus.ONLINE)

        await self.connections.send(connection, "staff_authenticated", {"staff": staff.to_public()})
        await self.connections.broadcast_to_staff(
            "staff_online", {"staffId": staff.id, "name": staff.name}, exclude_staff_id=staff.id
        )
        logger.info(f"Staff authenticated: {staff.name} ({staff.id})")

        if came_online:
            await self._auto_assign()
        await self.broadcast_queue_update()
        return staff

    async def join_customer(self, connection: Connection, session_id: str) -> ConversationSession:
        session = await self.sessions.require_session(session_id)
        self.connections.bind_customer(connection, session_id)
        await self.connections.send(
            connection, "joined_session", {"sessionId": session_id, "status": session.status.value}
        )
        logger.info(f"Customer joined session: {session_id}")
        return session

    async def disconnect(self, connection: Connection):
        """
        Forget a connection.

        A staff member without another live connection goes offline. A
        customer's session keeps its assignment; it leaves the queue only
        when DEQUEUE_ON_CUSTOMER_DISCONNECT is set.
        """
        self.connections.unregister(connection)

        staff_id = connection.staff_id
        if staff_id and not self.connections.is_staff_connected(staff_id):
            try:
                await self.directory.set_status(staff_id, StaffStatus.OFFLINE)
            except StaffNotFound:
                logger.info(f"Disconnected staff {staff_id} no longer exists")
            await self.connections.broadcast_to_staff("staff_offline", {"staffId": staff_id})

        session_id = connection.session_id
        if (
            session_id
            and self.dequeue_on_customer_disconnect
            and not self.connections.is_session_connected(session_id)
            and await self.queue.remove(session_id)
        ):
            await self.sessions.update_status(session_id, SessionStatus.ACTIVE)
            await self.broadcast_queue_update()

        logger.info(f"Connection closed: {connection.id}")

    async def typing(self, connection: Connection, session_id: str, is_typing: bool):
        """Relay a typing indicator to the other side of the conversation."""
        payload = {
            "sessionId": session_id,
            "userId": connection.staff_id or "customer",
            "isTyping": is_typing,
        }
        assignment = await self.ledger.get_open(session_id)

        if connection.staff_id:
            if assignment and assignment.staff_id == connection.staff_id:
                await self.connections.send_to_session(session_id, "user_typing", payload)
        elif connection.session_id == session_id:
            if assignment:
                await self.connections.send_to_staff(assignment.staff_id, "user_typing", payload)
        else:
            raise InvalidRole()

    # ── Messages ───────────────────────────────────────────────────

    async def _deliver(self, session_id: str, message: ChatMessage, staff_id: Optional[str] = None):
        payload = {"sessionId": session_id, "message": message.to_dict()}
        await self.connections.send_to_session(session_id, "new_message", payload)
        if staff_id:
            await self.connections.send_to_staff(staff_id, "new_message", payload)

    async def handle_customer_message(self, session_id: str, content: str) -> MessageOutcome:
        """
        Store a customer message and decide who answers it.

        Only an AI-handled (`active`) session without an open assignment
        reaches the AI responder; a session with staff, waiting for staff
        or escalated never does.
        """
        async with self._message_locks.hold(session_id):
            session = await self.sessions.require_session(session_id)
            message = await self.sessions.add_message(session_id, content, "user")
            assignment = await self.ledger.get_open(session_id)
            await self._deliver(session_id, message, assignment.staff_id if assignment else None)

            if session.status != SessionStatus.ACTIVE or assignment:
                return MessageOutcome(message=message)

            trigger = self.detector.check_message(content)
            if trigger:
                await self._escalate(session_id, trigger)
                return MessageOutcome(message=message, escalated=True)

            return await self._answer_with_ai(session_id, message)

    async def _answer_with_ai(self, session_id: str, message: ChatMessage) -> MessageOutcome:
        history = await self.sessions.get_history(session_id, HISTORY_FOR_RETRIEVAL)
        try:
            snippets = await asyncio.wait_for(
                self.knowledge.get_relevant_context(message.content, history),
                timeout=self.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Knowledge lookup timed out for {session_id}")
            snippets = []

        session = await self.sessions.require_session(session_id)
        start = time.time()
        failure: Optional[str] = None
        try:
            response = await asyncio.wait_for(
                self.responder.generate_response(session.messages, session.customer_info, snippets),
                timeout=self.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            failure = "timeout"
            logger.error(f"AI response timed out after {self.ai_timeout_seconds}s for {session_id}")
        except Exception as e:
            failure = "error"
            logger.error(f"Failed to generate AI response for {session_id}: {e}")

        # A human may have taken over while we waited.
        current = await self.sessions.require_session(session_id)
        deliverable = current.status == SessionStatus.ACTIVE

        if failure:
            record_ai_failure(failure)
            reply = await self.sessions.add_message(
                session_id, APOLOGY_MESSAGE, "assistant", {"apology": True, "delivered": deliverable}
            )
            if deliverable:
                await self._deliver(session_id, reply)
                if self.escalate_on_ai_failure:
                    await self._escalate(session_id, EscalationTrigger.AI_FAILURE)
                    return MessageOutcome(message=message, reply=reply, escalated=True)
            return MessageOutcome(message=message, reply=reply)

        record_ai_latency(time.time() - start)
        reply = await self.sessions.add_message(
            session_id, response.content, "assistant", {**response.metadata(), "delivered": deliverable}
        )
        if not deliverable:
            logger.info(f"Session {session_id} taken over during AI call; reply stored undelivered")
            return MessageOutcome(message=message, reply=reply)

        await self._deliver(session_id, reply)
        trigger = self.detector.record_confidence(session_id, response.confidence)
        if trigger:
            await self._escalate(session_id, trigger)
            return MessageOutcome(message=message, reply=reply, escalated=True)
        return MessageOutcome(message=message, reply=reply)

    async def _escalate(self, session_id: str, trigger: EscalationTrigger):
        note = await self.sessions.add_message(
            session_id, ESCALATING_MESSAGE, "system", {"trigger": trigger.value}
        )
        await self._deliver(session_id, note)
        await self.request_staff(session_id, trigger=trigger)

    async def handle_staff_message(self, staff_id: str, session_id: str, content: str) -> ChatMessage:
        """Store and deliver a message from the owning staff member, in session order."""
        async with self._message_locks.hold(session_id):
            assignment = await self.ledger.get_open(session_id)
            if not assignment:
                raise AssignmentNotFound(f"No open assignment for session {session_id}")
            if assignment.staff_id != staff_id:
                raise Mismatch(f"Session {session_id} is assigned to another staff member")

            await self.ledger.activate(session_id, staff_id)
            await self.directory.touch(staff_id)
            message = await self.sessions.add_message(session_id, content, "assistant", {"staffId": staff_id})
            await self._deliver(session_id, message)

        await self.connections.broadcast_to_staff(
            "staff_message_sent",
            {"sessionId": session_id, "staffId": staff_id, "message": content},
            exclude_staff_id=staff_id,
        )
        return message

    # ── Hand-off ───────────────────────────────────────────────────

    async def request_staff(
        self,
        session_id: str,
        priority: Optional[Priority] = None,
        trigger: EscalationTrigger = EscalationTrigger.USER_REQUEST,
    ) -> Dict[str, Any]:
        """
        Escalate a session to the staff queue and try to place it at once.

        Returns {sessionId, queued, position, assignment}.
        """
        session = await self.sessions.require_session(session_id)
        open_assignment = await self.ledger.get_open(session_id)
        if open_assignment:
            await self.connections.send_to_session(
                session_id,
                "staff_joined",
                {"staffId": open_assignment.staff_id, "message": ALREADY_WITH_STAFF_MESSAGE},
            )
            return {
                "sessionId": session_id,
                "queued": False,
                "position": None,
                "assignment": open_assignment.to_record(),
            }

        last_message = next((m.content for m in reversed(session.messages) if m.role == "user"), None)
        await self.sessions.update_status(session_id, SessionStatus.WAITING_FOR_STAFF)
        try:
            await self.queue.enqueue(
                session_id,
                Priority(priority or self.default_priority),
                customer_info=session.customer_info,
                last_message=last_message,
            )
            record_escalation(trigger.value)
        except AlreadyQueued:
            logger.info(f"Session {session_id} already queued")

        await self.connections.send_to_session(
            session_id,
            "added_to_queue",
            {
                "sessionId": session_id,
                "position": await self.queue.position(session_id),
                "message": QUEUED_MESSAGE,
            },
        )

        await self._auto_assign()
        await self.broadcast_queue_update()

        assignment = await self.ledger.get_open(session_id)
        return {
            "sessionId": session_id,
            "queued": assignment is None,
            "position": await self.queue.position(session_id),
            "assignment": assignment.to_record() if assignment else None,
        }

    async def _auto_assign(self) -> List[Assignment]:
        """Place queued sessions with available staff; never raises routing errors."""
        made = await self.assigner.drain()
        for assignment in made:
            record_assignment("auto")
            await self._on_assigned(assignment)
        if not made and await self.queue.length():
            record_assignment("no_staff")
        return made

    async def auto_assign_next(self) -> Assignment:
        """Place the queue head; raises QueueEmpty or NoStaffAvailable."""
        try:
            assignment = await self.assigner.assign_next()
        except HandoffError as e:
            record_assignment(e.code)
            raise

        record_assignment("auto")
        await self._on_assigned(assignment)
        await self.broadcast_queue_update()
        return assignment

    async def _on_assigned(self, assignment: Assignment):
        session_id = assignment.session_id
        await self.sessions.update_status(session_id, SessionStatus.WITH_STAFF, assigned_staff=assignment.staff_id)
        self.detector.reset(session_id)
        await self.connections.send_to_staff(
            assignment.staff_id,
            "chat_assigned",
            {"sessionId": session_id, "assignment": assignment.to_record()},
        )
        await self.connections.send_to_session(
            session_id,
            "staff_joined",
            {"staffId": assignment.staff_id, "message": STAFF_JOINED_MESSAGE},
        )

    async def assign_chat(
        self,
        session_id: str,
        staff_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> Assignment:
        """Assign a session to `staff_id`, or to the requesting staff member."""
        target = staff_id or requested_by
        if not target:
            raise InvalidRole("A staff member is required to claim a chat")

        await self.sessions.require_session(session_id)
        try:
            assignment = await self.assigner.assign_to(session_id, target)
        except HandoffError as e:
            record_assignment(e.code)
            raise

        record_assignment("manual")
        await self._on_assigned(assignment)
        await self.broadcast_queue_update()
        return assignment

    async def transfer_chat(self, session_id: str, from_staff_id: str, to_staff_id: str) -> Assignment:
        try:
            assignment, changed = await self.ledger.transfer(session_id, from_staff_id, to_staff_id)
            if not changed:
                raise Conflict(f"Session {session_id} has already been completed")
        except HandoffError as e:
            record_transfer(e.code)
            raise

        record_transfer("transferred")
        await self.sessions.update_status(session_id, SessionStatus.WITH_STAFF, assigned_staff=to_staff_id)
        await self.connections.send_to_staff(
            from_staff_id, "chat_transferred_out", {"sessionId": session_id, "toStaffId": to_staff_id}
        )
        await self.connections.send_to_staff(
            to_staff_id,
            "chat_transferred_in",
            {"sessionId": session_id, "fromStaffId": from_staff_id, "assignment": assignment.to_record()},
        )
        await self.connections.send_to_session(
            session_id, "staff_changed", {"staffId": to_staff_id, "message": TRANSFERRED_MESSAGE}
        )

        await self._auto_assign()
        await self.broadcast_queue_update()
        return assignment

    async def complete_chat(self, session_id: str, requested_by: Optional[str] = None) -> Assignment:
        """
        Resolve a chat and free its staff capacity.

        Repeat calls are no-ops: the customer is told once and load is
        released once. `requested_by`, when given, must own the chat.
        """
        current = await self.ledger.get(session_id)
        if current and current.is_open and requested_by and current.staff_id != requested_by:
            raise Mismatch(f"Session {session_id} is assigned to another staff member")

        assignment, changed = await self.ledger.complete(session_id)
        if changed:
            record_completion()
            await self.sessions.update_status(
                session_id, SessionStatus.RESOLVED, assigned_staff=assignment.staff_id
            )
            await self.queue.remove(session_id)
            self.detector.reset(session_id)
            await self.connections.send_to_session(
                session_id, "chat_completed", {"sessionId": session_id, "message": COMPLETED_MESSAGE}
            )

        await self.connections.send_to_staff(
            assignment.staff_id, "chat_completed_confirmed", {"sessionId": session_id}
        )

        if changed:
            await self._auto_assign()
            await self.broadcast_queue_update()
        return assignment

    async def set_staff_status(self, staff_id: str, status: StaffStatus) -> StaffMember:
        staff = await self.directory.set_status(staff_id, status)
        await self.connections.broadcast_to_staff(
            "staff_status_changed", {"staffId": staff_id, "status": staff.status.value}
        )
        if staff.status == StaffStatus.ONLINE:
            await self._auto_assign()
            await self.broadcast_queue_update()
        return staff

    async def update_session_status(self, session_id: str, status: SessionStatus) -> ConversationSession:
        """
        Apply a status set from outside the chat flow, keeping queue and
        ledger in step with it.
        """
        status = SessionStatus(status)
        session = await self.sessions.require_session(session_id)

        if status in (SessionStatus.RESOLVED, SessionStatus.ACTIVE):
            removed = await self.queue.remove(session_id)
            if await self.ledger.get_open(session_id):
                await self.complete_chat(session_id)
            self.detector.reset(session_id)
            assigned = None if status == SessionStatus.ACTIVE else session.assigned_staff
            session = await self.sessions.update_status(session_id, status, assigned_staff=assigned)
            if removed:
                await self.broadcast_queue_update()
            return session

        if status == SessionStatus.WAITING_FOR_STAFF:
            await self.request_staff(session_id, trigger=EscalationTrigger.MANUAL)
            return await self.sessions.require_session(session_id)

        if status == SessionStatus.WITH_STAFF:
            if not await self.ledger.get_open(session_id):
                raise Conflict("Session has no staff assignment; assign a staff member instead")
            return session

        return await self.sessions.update_status(session_id, status, assigned_staff=session.assigned_staff)

    async def broadcast_queue_update(self) -> Dict[str, Any]:
        stats = await self.queue.stats()
        record_queue_length(stats["length"])
        await self.connections.broadcast_to_staff("queue_updated", stats)
        return stats
