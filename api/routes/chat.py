"""
Chat API Routes for SupportDesk Chat.

Customer-facing session endpoints. Messages sent here follow the same
routing as socket messages: AI-handled sessions get an AI reply, sessions
with staff are forwarded to the assigned agent.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from handoff import Priority, SessionStatus

from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


# ── Request Models ────────────────────────────────────────────────

class CustomerInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    name: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    company: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CreateSessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_info: Optional[CustomerInfo] = Field(default=None, alias="customerInfo")
    metadata: Optional[Dict[str, Any]] = None


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: str = Field(..., min_length=1, max_length=2000)
    customer_info: Optional[CustomerInfo] = Field(default=None, alias="customerInfo")


class SessionStatusRequest(BaseModel):
    status: SessionStatus


class RequestStaffRequest(BaseModel):
    priority: Optional[Priority] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(request: CreateSessionRequest):
    customer_info = request.customer_info.to_record() if request.customer_info else None
    session = await get_services().sessions.create_session(customer_info, request.metadata)
    logger.info(f"Session created: {session.id}")
    return {"success": True, "session": session.to_dict()}


@router.post("/send")
async def send_message(request: SendMessageRequest):
    """
    Send a customer message.

    Creates the session when no (known) sessionId is given. `response` is
    the AI reply, or null when staff handle the session.
    """
    services = get_services()
    customer_info = request.customer_info.to_record() if request.customer_info else None
    session = await services.sessions.get_or_create_session(request.session_id, customer_info)

    outcome = await services.coordinator.handle_customer_message(session.id, request.message)
    reply = outcome.reply if outcome.reply and outcome.reply.metadata.get("delivered", True) else None
    current = await services.sessions.require_session(session.id)

    return {
        "sessionId": session.id,
        "messageId": outcome.message.id,
        "response": reply.content if reply else None,
        "responseId": reply.id if reply else None,
        "status": current.status.value,
        "escalated": outcome.escalated,
        "timestamp": (reply or outcome.message).timestamp.isoformat(),
        "metadata": reply.metadata if reply else {},
    }


@router.get("/session/{session_id}")
async def get_session(session_id: str):
    session = await get_services().sessions.require_session(session_id)
    return session.to_dict()


@router.put("/session/{session_id}/status")
async def update_session_status(session_id: str, request: SessionStatusRequest):
    session = await get_services().coordinator.update_session_status(session_id, request.status)
    return {"success": True, "message": "Status updated successfully", "session": session.to_dict()}


@router.get("/session/{session_id}/transcript", response_class=PlainTextResponse)
async def get_transcript(session_id: str):
    transcript = await get_services().sessions.export_transcript(session_id)
    return PlainTextResponse(
        transcript,
        headers={"Content-Disposition": f'attachment; filename="chat-transcript-{session_id}.txt"'},
    )


@router.post("/session/{session_id}/request-staff")
async def request_staff(session_id: str, request: Optional[RequestStaffRequest] = None):
    """Escalate to a human; the session is queued if nobody can take it now."""
    priority = request.priority if request else None
    result = await get_services().coordinator.request_staff(session_id, priority)
    return {"success": True, **result}


@router.get("/stats")
async def chat_stats():
    services = get_services()
    return {
        "sessions": await services.sessions.stats(),
        "queue": await services.queue.stats(),
    }
