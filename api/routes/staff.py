"""
Staff API routes for SupportDesk Chat.

Login/logout, presence, the queue view and the HTTP mirror of the
real-time assign/transfer/complete commands for dashboards that poll.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from ..middleware.auth import (
    AuthenticationError, get_bearer_token, get_current_staff, hash_password, require_role,
)
from ..services import get_services
from handoff import Conflict, StaffMember, StaffNotFound, StaffRole, StaffStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/staff", tags=["staff"])


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: StaffStatus


class AssignChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    staff_id: Optional[str] = Field(default=None, alias="staffId")


class TransferChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    to_staff_id: str = Field(..., alias="toStaffId")


class CreateStaffRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3)
    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)
    role: StaffRole = StaffRole.AGENT
    max_concurrent_chats: int = Field(default=5, ge=0, alias="maxConcurrentChats")


@router.post("/login")
async def login(request: LoginRequest):
    """Exchange email/password for a bearer token; marks the staff member online."""
    services = get_services()
    try:
        token, expires_in, staff = await services.authenticator.login(request.email, request.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    staff = await services.coordinator.set_staff_status(staff.id, StaffStatus.ONLINE)
    return {"success": True, "token": token, "expiresIn": expires_in, "user": staff.to_public()}


@router.post("/logout")
async def logout(
    token: str = Depends(get_bearer_token),
    staff: StaffMember = Depends(get_current_staff),
):
    services = get_services()
    await services.authenticator.logout(token)
    await services.coordinator.set_staff_status(staff.id, StaffStatus.OFFLINE)
    logger.info(f"Staff logged out: {staff.email}")
    return {"success": True, "message": "Logged out successfully"}


@router.get("/profile")
async def profile(staff: StaffMember = Depends(get_current_staff)):
    return {"staff": staff.to_public()}


@router.put("/status")
async def update_status(request: StatusUpdateRequest, staff: StaffMember = Depends(get_current_staff)):
    updated = await get_services().coordinator.set_staff_status(staff.id, request.status)
    return {"success": True, "staff": updated.to_public()}


@router.get("/dashboard")
async def dashboard(staff: StaffMember = Depends(get_current_staff)):
    services = get_services()
    queue_stats = await services.queue.stats()
    assignments = await services.ledger.for_staff(staff.id)
    return {
        "staff": staff.to_public(),
        "assignedChats": staff.current_chat_count,
        "queueLength": queue_stats["length"],
        "averageWaitTime": queue_stats["averageWaitTime"],
        "queue": queue_stats,
        "assignments": [a.to_record() for a in assignments],
    }


@router.get("/queue")
async def get_queue(staff: StaffMember = Depends(get_current_staff)):
    services = get_services()
    return {
        "queue": await services.queue.snapshot(),
        "stats": await services.queue.stats(),
    }


@router.post("/assign-chat")
async def assign_chat(request: AssignChatRequest, staff: StaffMember = Depends(get_current_staff)):
    """Assign a session to a staff member; without staffId the caller claims it."""
    assignment = await get_services().coordinator.assign_chat(
        request.session_id, request.staff_id, requested_by=staff.id
    )
    return {"success": True, "assignment": assignment.to_record(), "message": "Chat assigned successfully"}


@router.post("/transfer-chat")
async def transfer_chat(request: TransferChatRequest, staff: StaffMember = Depends(get_current_staff)):
    assignment = await get_services().coordinator.transfer_chat(
        request.session_id, staff.id, request.to_staff_id
    )
    return {"success": True, "assignment": assignment.to_record(), "message": "Chat transferred successfully"}


@router.post("/complete-chat/{session_id}")
async def complete_chat(session_id: str, staff: StaffMember = Depends(get_current_staff)):
    """Resolve a chat. Admins may close chats owned by others."""
    requested_by = None if staff.role == StaffRole.ADMIN else staff.id
    assignment = await get_services().coordinator.complete_chat(session_id, requested_by=requested_by)
    return {"success": True, "assignment": assignment.to_record(), "message": "Chat completed successfully"}


@router.post("/auto-assign")
async def auto_assign(staff: StaffMember = Depends(get_current_staff)):
    """Assign the queue head to the least-loaded available staff member."""
    assignment = await get_services().coordinator.auto_assign_next()
    return {"success": True, "assignment": assignment.to_record()}


@router.get("/assignments")
async def list_assignments(staff: StaffMember = Depends(get_current_staff)):
    services = get_services()
    result = []
    for assignment in await services.ledger.for_staff(staff.id):
        session = await services.sessions.get_session(assignment.session_id)
        result.append({**assignment.to_record(), "session": session.to_dict() if session else None})
    return {"assignments": result}


@router.get("/online")
async def online_staff(staff: StaffMember = Depends(get_current_staff)):
    members = await get_services().directory.list_online()
    return {"staff": [m.to_public() for m in members]}


@router.get("/all")
async def all_staff(staff: StaffMember = Depends(require_role("admin"))):
    members = await get_services().directory.list_all()
    return {"staff": [m.to_public() for m in members]}


@router.get("/stats")
async def staff_stats(staff: StaffMember = Depends(require_role("admin"))):
    services = get_services()
    members = await services.directory.list_all()
    return {
        "totalStaff": len(members),
        "onlineStaff": sum(1 for m in members if m.status == StaffStatus.ONLINE),
        "busyStaff": sum(1 for m in members if m.status == StaffStatus.BUSY),
        "awayStaff": sum(1 for m in members if m.status == StaffStatus.AWAY),
        "totalAssignedChats": sum(m.current_chat_count for m in members),
        "totalCapacity": sum(m.max_concurrent_chats for m in members),
        "queueStats": await services.queue.stats(),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_staff(request: CreateStaffRequest, staff: StaffMember = Depends(require_role("admin"))):
    try:
        created = await get_services().directory.provision(
            email=request.email,
            name=request.name,
            password_hash=hash_password(request.password),
            role=request.role,
            max_concurrent_chats=request.max_concurrent_chats,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return {"success": True, "staff": created.to_public()}


@router.delete("/{staff_id}")
async def delete_staff(staff_id: str, staff: StaffMember = Depends(require_role("admin"))):
    """Remove a staff member who owns no open chats."""
    services = get_services()
    if staff_id == staff.id:
        raise Conflict("Cannot remove your own account")
    if await services.ledger.for_staff(staff_id):
        raise Conflict("Staff member still owns open chats; transfer or complete them first")
    if not await services.directory.remove(staff_id):
        raise StaffNotFound(f"Staff member {staff_id} not found")
    return {"success": True, "message": "Staff member removed"}
