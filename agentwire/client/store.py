"""Chat state mirrored from the event stream.

ChatStore is an explicit reducer object: every mutation goes through a
method, and every method that changes state notifies subscribers once.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


def _gen_id() -> str:
    return f"msg-{uuid.uuid4().hex[:8]}"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolCallStatus(str, Enum):
    """Tool call phases, in the only order they may be entered."""
    PENDING = "pending"
    STREAMING_INPUT = "streaming_input"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETE, ToolCallStatus.ERROR)


_STATUS_RANK = {
    ToolCallStatus.PENDING: 0,
    ToolCallStatus.STREAMING_INPUT: 1,
    ToolCallStatus.RUNNING: 2,
    ToolCallStatus.COMPLETE: 3,
    ToolCallStatus.ERROR: 3,
}


@dataclass
class ToolCallInfo:
    id: str
    name: str
    input: Any = field(default_factory=dict)
    partial_input: str = ""
    result: Any = None
    error: str | None = None
    status: ToolCallStatus = ToolCallStatus.PENDING

    def advance(self, status: ToolCallStatus) -> bool:
        """Move to *status* if that is forward; returns whether it moved."""
        if self.status.terminal or status.rank < self.status.rank:
            return False
        self.status = status
        return True


@dataclass
class ChatMessage:
    role: MessageRole
    content: str = ""
    id: str = field(default_factory=_gen_id)
    tool_calls: list[ToolCallInfo] = field(default_factory=list)


Listener = Callable[["ChatStore"], None]


class ChatStore:
    """Conversation state for one session, as seen by a client."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self.session_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.is_streaming = False
        self.is_thinking = False
        self.streaming_text = ""

    # ── Subscription ──

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("ChatStore listener failed")

    # ── Session / flags ──

    def set_session_id(self, session_id: str | None) -> None:
        self.session_id = session_id
        self._notify()

    def set_streaming(self, value: bool) -> None:
        if self.is_streaming != value:
            self.is_streaming = value
            self._notify()

    def set_thinking(self, value: bool) -> None:
        if self.is_thinking != value:
            self.is_thinking = value
            self._notify()

    # ── Messages ──

    def add_user_message(self, text: str) -> ChatMessage:
        msg = ChatMessage(role=MessageRole.USER, content=text)
        self.messages.append(msg)
        self._notify()
        return msg

    def add_system_message(self, text: str) -> ChatMessage:
        msg = ChatMessage(role=MessageRole.SYSTEM, content=text)
        self.messages.append(msg)
        self._notify()
        return msg

    def append_streaming_text(self, text: str) -> None:
        if not text:
            return
        self.streaming_text += text
        self._notify()

    def flush_streaming_text(self) -> None:
        """Move buffered text into the conversation.

        Appends to the last message when it is an assistant message with
        no tool calls, otherwise starts a new assistant message. No-op on
        an empty buffer.
        """
        if not self.streaming_text:
            return
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role is MessageRole.ASSISTANT and not last.tool_calls:
            last.content += self.streaming_text
        else:
            self.messages.append(
                ChatMessage(role=MessageRole.ASSISTANT, content=self.streaming_text)
            )
        self.streaming_text = ""
        self._notify()

    # ── Tool calls ──

    def find_tool_call(self, tool_id: str) -> ToolCallInfo | None:
        for msg in reversed(self.messages):
            for tc in msg.tool_calls:
                if tc.id == tool_id:
                    return tc
        return None

    def start_tool_call(self, tool_id: str, name: str) -> ToolCallInfo:
        existing = self.find_tool_call(tool_id)
        if existing is not None:
            return existing
        tc = ToolCallInfo(id=tool_id, name=name)
        last = self.messages[-1] if self.messages else None
        if last is not None and last.role is MessageRole.ASSISTANT:
            last.tool_calls.append(tc)
        else:
            self.messages.append(ChatMessage(role=MessageRole.ASSISTANT, tool_calls=[tc]))
        self._notify()
        return tc

    def append_tool_input(self, tool_id: str, partial_json: str) -> None:
        tc = self.find_tool_call(tool_id)
        if tc is None or tc.status.rank > ToolCallStatus.STREAMING_INPUT.rank:
            return
        tc.partial_input += partial_json
        tc.advance(ToolCallStatus.STREAMING_INPUT)
        self._notify()

    def finalize_tool_call(self, tool_id: str, name: str, tool_input: Any) -> None:
        """Record the complete input; creates the call if no start was seen."""
        tc = self.find_tool_call(tool_id) or self.start_tool_call(tool_id, name)
        if not tc.advance(ToolCallStatus.RUNNING):
            return
        tc.name = name or tc.name
        tc.input = tool_input if tool_input is not None else {}
        self._notify()

    def complete_tool_call(self, tool_id: str, result: Any) -> None:
        tc = self.find_tool_call(tool_id)
        if tc is None or not tc.advance(ToolCallStatus.COMPLETE):
            return
        tc.result = result
        self._notify()

    def error_tool_call(self, tool_id: str, error: str) -> None:
        tc = self.find_tool_call(tool_id)
        if tc is None or not tc.advance(ToolCallStatus.ERROR):
            return
        tc.error = error
        self._notify()

    # ── Reset ──

    def reset(self) -> None:
        self.session_id = None
        self.messages = []
        self.is_streaming = False
        self.is_thinking = False
        self.streaming_text = ""
        self._notify()
