"""
Staff hand-off module for SupportDesk Chat.

This module handles:
- Staff presence and chat load (StaffDirectory)
- The waiting queue (ChatQueue)
- Session ownership (AssignmentLedger)
- Least-loaded auto-assignment (AutoAssigner)
- Implicit escalation triggers (EscalationDetector)
"""

from .errors import (
    AlreadyQueued, AssignmentNotFound, CapacityExceeded, Conflict, HandoffError,
    InvalidRole, Mismatch, NoStaffAvailable, NotFound, QueueEmpty, SessionNotFound,
    StaffNotFound, TransferRollbackFailed,
)
from .ledger import AssignmentLedger
from .models import (
    Assignment, AssignmentStatus, Priority, QueueEntry, SessionStatus,
    StaffMember, StaffRole, StaffStatus,
)
from .queue import ChatQueue
from .router import AutoAssigner
from .staff_directory import StaffDirectory
from .triggers import EscalationDetector, EscalationTrigger

__all__ = [
    "AlreadyQueued", "AssignmentNotFound", "CapacityExceeded", "Conflict", "HandoffError",
    "InvalidRole", "Mismatch", "NoStaffAvailable", "NotFound", "QueueEmpty", "SessionNotFound",
    "StaffNotFound", "TransferRollbackFailed",
    "AssignmentLedger",
    "Assignment", "AssignmentStatus", "Priority", "QueueEntry", "SessionStatus",
    "StaffMember", "StaffRole", "StaffStatus",
    "ChatQueue",
    "AutoAssigner",
    "StaffDirectory",
    "EscalationDetector", "EscalationTrigger",
]
