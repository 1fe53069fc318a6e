"""Canonical output events sent to web clients.

Exactly ten event kinds exist. Each is a dataclass whose fields are the
event payload; ``event_to_payload`` maps them to the camelCase JSON
object that goes on the wire, and ``dict_to_event`` parses a received
payload back into the typed dataclass.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SSEEvent:
    """One wire frame: the event kind and its JSON-encoded payload."""
    event: str
    data: str

    def payload(self) -> Any:
        return json.loads(self.data) if self.data else {}


@dataclass
class OutputEvent:
    """Base class for canonical output events."""
    event_type: str = ""


@dataclass
class MessageStart(OutputEvent):
    event_type: str = "message_start"


@dataclass
class TextDelta(OutputEvent):
    event_type: str = "text_delta"
    text: str = ""


@dataclass
class ToolStart(OutputEvent):
    event_type: str = "tool_start"
    id: str = ""
    name: str = ""


@dataclass
class ToolInputDelta(OutputEvent):
    event_type: str = "tool_input_delta"
    id: str = ""
    partial_json: str = ""


@dataclass
class ToolCall(OutputEvent):
    event_type: str = "tool_call"
    id: str = ""
    name: str = ""
    input: Any = field(default_factory=dict)


@dataclass
class ToolProgress(OutputEvent):
    event_type: str = "tool_progress"
    tool_name: str = ""
    elapsed: float | None = None


@dataclass
class ToolResult(OutputEvent):
    event_type: str = "tool_result"
    tool_use_id: str = ""
    result: Any = ""
    # Only serialized when True.
    is_error: bool = False


@dataclass
class TurnComplete(OutputEvent):
    event_type: str = "turn_complete"
    num_turns: int | None = None
    cost: float | None = None


@dataclass
class SessionError(OutputEvent):
    event_type: str = "session_error"
    subtype: str = ""


@dataclass
class CustomEvent(OutputEvent):
    """Caller-defined event injected after a tool result."""
    event_type: str = "custom"
    name: str = ""
    value: Any = None


# Map of event kind strings to dataclass constructors
EVENT_TYPES: dict[str, type[OutputEvent]] = {
    "message_start": MessageStart,
    "text_delta": TextDelta,
    "tool_start": ToolStart,
    "tool_input_delta": ToolInputDelta,
    "tool_call": ToolCall,
    "tool_progress": ToolProgress,
    "tool_result": ToolResult,
    "turn_complete": TurnComplete,
    "session_error": SessionError,
    "custom": CustomEvent,
}

# Python field name -> wire key, where they differ
_WIRE_NAMES: dict[str, str] = {
    "partial_json": "partialJson",
    "tool_name": "toolName",
    "tool_use_id": "toolUseId",
    "num_turns": "numTurns",
    "is_error": "isError",
}
_FIELD_NAMES: dict[str, str] = {v: k for k, v in _WIRE_NAMES.items()}


def event_to_payload(event: OutputEvent) -> dict[str, Any]:
    """Convert a typed event to its wire payload, in field order."""
    payload: dict[str, Any] = {}
    for name in event.__dataclass_fields__:
        if name == "event_type":
            continue
        value = getattr(event, name)
        if name == "is_error" and not value:
            continue
        payload[_WIRE_NAMES.get(name, name)] = value
    return payload


def encode_payload(payload: dict[str, Any]) -> str:
    """Compact JSON, the same bytes a JavaScript JSON.stringify produces."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def to_sse(event: OutputEvent) -> SSEEvent:
    return SSEEvent(event=event.event_type, data=encode_payload(event_to_payload(event)))


def dict_to_event(kind: str, payload: dict[str, Any]) -> OutputEvent | None:
    """Parse a received payload into its typed event, or None for unknown kinds."""
    cls = EVENT_TYPES.get(kind)
    if cls is None:
        return None
    valid_fields = set(cls.__dataclass_fields__) - {"event_type"}
    kwargs: dict[str, Any] = {}
    for key, value in payload.items():
        name = _FIELD_NAMES.get(key, key)
        if name in valid_fields:
            kwargs[name] = value
    return cls(**kwargs)
