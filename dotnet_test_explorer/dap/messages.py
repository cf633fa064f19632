"""Debug Adapter Protocol messages as a closed tagged union.

Only the envelope is modelled. Command arguments and bodies stay loosely
typed dictionaries so that unknown fields survive a relay untouched.
"""

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Message(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    seq: int = 0


class Request(_Message):
    """A request from the client (IDE) to the debug adapter."""

    type: Literal["request"] = "request"
    command: str
    arguments: dict[str, Any] | None = None


class Response(_Message):
    """A response from the debug adapter to a request."""

    type: Literal["response"] = "response"
    request_seq: int = 0
    success: bool = True
    command: str
    message: str | None = None
    body: Any = None


class Event(_Message):
    """An event raised by the debug adapter."""

    type: Literal["event"] = "event"
    event: str
    body: Any = None


ProtocolMessage = Annotated[Request | Response | Event, Field(discriminator="type")]

_MESSAGE_ADAPTER: TypeAdapter[Request | Response | Event] = TypeAdapter(
    ProtocolMessage
)


def parse_message(data: Mapping[str, Any]) -> Request | Response | Event:
    """Validate a decoded message into its typed form.

    Raises:
        pydantic.ValidationError: If ``type`` is missing or unknown, or a
            required envelope field is absent

    """
    return _MESSAGE_ADAPTER.validate_python(data)


def to_wire(message: Request | Response | Event) -> dict[str, Any]:
    """Convert a typed message back into its JSON-ready form."""
    return message.model_dump(mode="json", exclude_none=True)


def describe(message: Request | Response | Event) -> str:
    """Return a short human-readable label for logging."""
    match message:
        case Request(command=command):
            return f"request {command}"
        case Response(command=command, success=success):
            return f"response {command} ({'ok' if success else 'failed'})"
        case Event(event=event):
            return f"event {event}"
