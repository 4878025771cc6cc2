"""
Inbound real-time commands.

Each socket event maps to exactly one pydantic model; `parse_command` turns
a raw `{"event", "data"}` frame into the matching instance. Payload keys are
camelCase on the wire.
"""

from typing import Any, ClassVar, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from handoff.models import Priority, StaffStatus


class CommandError(Exception):
    """A frame that does not decode to a known command."""


class Command(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: ClassVar[str] = ""
    staff_only: ClassVar[bool] = False


class StaffAuthenticate(Command):
    event: ClassVar[str] = "staff_authenticate"

    token: str


class CustomerJoin(Command):
    event: ClassVar[str] = "customer_join"

    session_id: str = Field(alias="sessionId")


class StaffStatusUpdate(Command):
    event: ClassVar[str] = "staff_status_update"
    staff_only: ClassVar[bool] = True

    status: StaffStatus


class SendMessage(Command):
    event: ClassVar[str] = "send_message"

    session_id: str = Field(alias="sessionId")
    message: str = Field(min_length=1)
    role: str = Field(default="customer", pattern="^(staff|customer)$")


class TypingStart(Command):
    event: ClassVar[str] = "typing_start"

    session_id: str = Field(alias="sessionId")


class TypingStop(Command):
    event: ClassVar[str] = "typing_stop"

    session_id: str = Field(alias="sessionId")


class AssignChat(Command):
    event: ClassVar[str] = "assign_chat"
    staff_only: ClassVar[bool] = True

    session_id: str = Field(alias="sessionId")
    staff_id: Optional[str] = Field(default=None, alias="staffId")


class TransferChat(Command):
    event: ClassVar[str] = "transfer_chat"
    staff_only: ClassVar[bool] = True

    session_id: str = Field(alias="sessionId")
    to_staff_id: str = Field(alias="toStaffId")


class CompleteChat(Command):
    event: ClassVar[str] = "complete_chat"
    staff_only: ClassVar[bool] = True

    session_id: str = Field(alias="sessionId")


class RequestStaff(Command):
    event: ClassVar[str] = "request_staff"

    session_id: str = Field(alias="sessionId")
    priority: Optional[Priority] = None


InboundCommand = Union[
    StaffAuthenticate, CustomerJoin, StaffStatusUpdate, SendMessage, TypingStart,
    TypingStop, AssignChat, TransferChat, CompleteChat, RequestStaff,
]

COMMANDS: Dict[str, Type[Command]] = {
    cls.event: cls
    for cls in (
        StaffAuthenticate, CustomerJoin, StaffStatusUpdate, SendMessage, TypingStart,
        TypingStop, AssignChat, TransferChat, CompleteChat, RequestStaff,
    )
}


def parse_command(event: Any, data: Any) -> Command:
    """Decode one inbound frame; raises CommandError for unknown or malformed input."""
    model = COMMANDS.get(event) if isinstance(event, str) else None
    if model is None:
        raise CommandError(f"Unknown event: {event}")
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise CommandError(f"Invalid payload for {event}: {fields}") from e
