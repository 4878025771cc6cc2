"""
Hand-off error taxonomy.

Every routing, queueing and assignment failure is a HandoffError so callers
can map the whole family to a structured `{success: false, error}` payload.
"""


class HandoffError(Exception):
    """Base class for hand-off failures."""

    code = "handoff_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class NotFound(HandoffError):
    """Requested entity not found."""
    code = "not_found"


class StaffNotFound(NotFound):
    """Staff member not found."""
    code = "staff_not_found"


class SessionNotFound(NotFound):
    """Session not found."""
    code = "session_not_found"


class AssignmentNotFound(NotFound):
    """Assignment not found."""
    code = "assignment_not_found"


class Conflict(HandoffError):
    """Session is owned by another staff member."""
    code = "conflict"


class Mismatch(Conflict):
    """Assignment belongs to a different staff member."""
    code = "mismatch"


class CapacityExceeded(HandoffError):
    """Staff member at maximum capacity."""
    code = "capacity_exceeded"


class AlreadyQueued(HandoffError):
    """Session is already waiting in the queue."""
    code = "already_queued"


class QueueEmpty(HandoffError):
    """No chats in queue."""
    code = "queue_empty"


class NoStaffAvailable(HandoffError):
    """No available staff."""
    code = "no_staff_available"


class TransferRollbackFailed(HandoffError):
    """Transfer failed, please retry."""
    code = "transfer_rollback_failed"


class InvalidRole(HandoffError):
    """Action not permitted for this connection."""
    code = "invalid_role"
