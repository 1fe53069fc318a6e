"""Translate raw agent-protocol messages into canonical output events.

One translator instance is shared by every session. The only state it
keeps is per-session tool correlation: the most recently opened tool
(used to route streamed input deltas, which do not repeat the tool id)
and the names of tools whose final call was already emitted.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentwire.adapters.events import (
    CustomEvent,
    MessageStart,
    OutputEvent,
    SessionError,
    SSEEvent,
    TextDelta,
    ToolCall,
    ToolInputDelta,
    ToolProgress,
    ToolResult,
    ToolStart,
    TurnComplete,
    to_sse,
)

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

# Signature: hook(tool_name, result, session) -> iterable of custom entries.
# Entries may be CustomEvent, {"name": ..., "value": ...} or (name, value).
ToolResultHook = Callable[[str, Any, "Session"], Iterable[Any] | None]


@dataclass
class _ToolCorrelation:
    last_tool_id: str | None = None
    last_tool_name: str | None = None
    # tool id -> name, for tools whose tool_call was emitted
    called: dict[str, str] = field(default_factory=dict)


class MessageTranslator:
    """Maps each raw agent message to zero or more SSE events."""

    def __init__(self, on_tool_result: ToolResultHook | None = None) -> None:
        self._on_tool_result = on_tool_result
        self._state: dict[str, _ToolCorrelation] = {}

    def translate(self, message: Any, session: Session) -> list[SSEEvent]:
        frames: list[SSEEvent] = []
        for event in self.translate_events(message, session):
            try:
                frames.append(to_sse(event))
            except (TypeError, ValueError):
                logger.exception(
                    "Session %s dropped %s event with unencodable payload",
                    session.id[:8], event.event_type,
                )
        return frames

    def translate_events(self, message: Any, session: Session) -> list[OutputEvent]:
        """Same as ``translate`` but returns the typed events."""
        if not isinstance(message, Mapping):
            return []
        msg_type = message.get("type")
        if msg_type == "stream_event":
            return self._stream_event(message.get("event"), session)
        if msg_type == "assistant":
            return self._assistant(message, session)
        if msg_type == "user":
            return self._user(message, session)
        if msg_type == "tool_progress":
            return [ToolProgress(
                tool_name=message.get("tool_name", ""),
                elapsed=message.get("elapsed_time_seconds"),
            )]
        if msg_type == "result":
            subtype = message.get("subtype", "")
            if subtype == "success":
                return [TurnComplete(
                    num_turns=message.get("num_turns"),
                    cost=message.get("total_cost_usd"),
                )]
            return [SessionError(subtype=str(subtype))]
        return []

    def forget(self, session_id: str) -> None:
        """Drop the correlation state of an evicted session."""
        self._state.pop(session_id, None)

    def open_tool(self, session_id: str) -> tuple[str | None, str | None]:
        """Return (id, name) of the most recently opened tool, if any."""
        state = self._state.get(session_id)
        if state is None:
            return None, None
        return state.last_tool_id, state.last_tool_name

    # ── Rule groups ──

    def _correlation(self, session: Session) -> _ToolCorrelation:
        state = self._state.get(session.id)
        if state is None:
            state = self._state[session.id] = _ToolCorrelation()
        return state

    def _stream_event(self, event: Any, session: Session) -> list[OutputEvent]:
        if not isinstance(event, Mapping):
            return []
        event_type = event.get("type")

        if event_type == "message_start":
            return [MessageStart()]

        if event_type == "content_block_start":
            block = event.get("content_block")
            if isinstance(block, Mapping) and block.get("type") == "tool_use":
                state = self._correlation(session)
                state.last_tool_id = block.get("id", "")
                state.last_tool_name = block.get("name", "")
                return [ToolStart(id=state.last_tool_id, name=state.last_tool_name)]
            return []

        if event_type == "content_block_delta":
            delta = event.get("delta")
            if not isinstance(delta, Mapping):
                return []
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return [TextDelta(text=delta.get("text", ""))]
            if delta_type == "input_json_delta":
                state = self._state.get(session.id)
                if state is None or state.last_tool_id is None:
                    logger.debug(
                        "Session %s input delta with no open tool, dropped",
                        session.id[:8],
                    )
                    return []
                if state.last_tool_id in state.called:
                    logger.debug(
                        "Session %s input delta for finalized tool %s, dropped",
                        session.id[:8], state.last_tool_id,
                    )
                    return []
                return [ToolInputDelta(
                    id=state.last_tool_id,
                    partial_json=delta.get("partial_json", ""),
                )]
        return []

    def _assistant(self, message: Mapping[str, Any], session: Session) -> list[OutputEvent]:
        events: list[OutputEvent] = []
        for block in _content_blocks(message):
            if block.get("type") != "tool_use":
                continue
            tool_id = block.get("id", "")
            name = block.get("name", "")
            state = self._correlation(session)
            state.last_tool_id = tool_id
            state.last_tool_name = name
            state.called[tool_id] = name
            events.append(ToolCall(id=tool_id, name=name, input=_tool_input(block.get("input"))))
        return events

    def _user(self, message: Mapping[str, Any], session: Session) -> list[OutputEvent]:
        events: list[OutputEvent] = []
        for block in _content_blocks(message):
            if block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id", "")
            state = self._state.get(session.id)
            if state is None or tool_use_id not in state.called:
                logger.warning(
                    "Session %s tool_result for unannounced tool %s, dropped",
                    session.id[:8], tool_use_id,
                )
                continue
            tool_name = state.called.pop(tool_use_id)
            result = tool_result_text(block.get("content"))
            events.append(ToolResult(
                tool_use_id=tool_use_id,
                result=result,
                is_error=bool(block.get("is_error", False)),
            ))
            events.extend(self._custom_events(tool_name, result, session))
        return events

    def _custom_events(self, tool_name: str, result: Any, session: Session) -> list[OutputEvent]:
        if self._on_tool_result is None:
            return []
        try:
            entries = self._on_tool_result(tool_name, result, session)
        except Exception:
            logger.exception(
                "Session %s on_tool_result hook failed for %s",
                session.id[:8], tool_name,
            )
            return []
        customs: list[OutputEvent] = []
        for entry in entries or ():
            custom = _as_custom(entry)
            if custom is None:
                logger.warning("Ignoring malformed custom event entry: %r", entry)
                continue
            customs.append(custom)
        return customs


def _content_blocks(message: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    inner = message.get("message")
    if not isinstance(inner, Mapping):
        return []
    content = inner.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, Mapping)]


def _tool_input(value: Any) -> Any:
    """Structured tool input; unparseable strings pass through as-is."""
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value
    return value


def _as_custom(entry: Any) -> CustomEvent | None:
    if isinstance(entry, CustomEvent):
        return entry
    if isinstance(entry, Mapping) and "name" in entry:
        return CustomEvent(name=str(entry["name"]), value=entry.get("value"))
    if isinstance(entry, tuple) and len(entry) == 2:
        return CustomEvent(name=str(entry[0]), value=entry[1])
    return None


def tool_result_text(content: Any) -> Any:
    """Flatten a tool_result content payload.

    Strings pass through; a list of content blocks becomes the newline
    joined text of its text blocks. Anything else without text is
    returned unchanged so it still serializes as JSON.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
            elif isinstance(item, Mapping) and isinstance(item.get("text"), str):
                chunks.append(item["text"])
        if chunks:
            return "\n".join(chunks)
        return content
    if isinstance(content, Mapping):
        text = content.get("text")
        if isinstance(text, str):
            return text
    return content
