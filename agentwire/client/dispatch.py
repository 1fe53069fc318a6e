"""Applies stream events to a ChatStore.

Consumes SSE frames in arrival order and maps each event kind to exactly
one handler. Unknown kinds are ignored.
"""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, Callable
from typing import Any

from agentwire.adapters.events import SSEEvent

from .store import ChatStore

logger = logging.getLogger(__name__)

# Signature: on_custom(name, value)
CustomHandler = Callable[[str, Any], None]


class EventDispatcher:
    """Per-kind handler mapping over a ChatStore."""

    def __init__(self, store: ChatStore, on_custom: CustomHandler | None = None) -> None:
        self._store = store
        self._on_custom = on_custom
        self._handlers: dict[str, Callable[[dict[str, Any]], None]] = {
            "message_start": self._on_message_start,
            "text_delta": self._on_text_delta,
            "tool_start": self._on_tool_start,
            "tool_input_delta": self._on_tool_input_delta,
            "tool_call": self._on_tool_call,
            "tool_progress": self._on_tool_progress,
            "tool_result": self._on_tool_result,
            "turn_complete": self._on_turn_complete,
            "session_error": self._on_session_error,
            "custom": self._on_custom_event,
        }

    @property
    def store(self) -> ChatStore:
        return self._store

    def dispatch(self, event: SSEEvent) -> None:
        try:
            payload = json.loads(event.data) if event.data else {}
        except json.JSONDecodeError:
            logger.warning("Dropping %s event with invalid JSON: %r", event.event, event.data[:200])
            return
        self.apply(event.event, payload if isinstance(payload, dict) else {})

    def apply(self, kind: str, payload: dict[str, Any]) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            logger.debug("Ignoring unknown event kind %s", kind)
            return
        handler(payload)

    async def run(self, events: AsyncIterable[SSEEvent]) -> None:
        """Apply every event until the stream ends, then settle the store."""
        try:
            async for event in events:
                try:
                    self.dispatch(event)
                except Exception:
                    logger.exception("Error processing event: %s", event.event)
        finally:
            self.on_disconnect()

    def on_disconnect(self) -> None:
        self._store.flush_streaming_text()
        self._store.set_streaming(False)

    # ── Handlers ──

    def _on_message_start(self, payload: dict[str, Any]) -> None:
        self._store.set_thinking(True)

    def _on_text_delta(self, payload: dict[str, Any]) -> None:
        self._store.set_thinking(False)
        self._store.append_streaming_text(payload.get("text", ""))

    def _on_tool_start(self, payload: dict[str, Any]) -> None:
        s = self._store
        s.set_thinking(False)
        s.flush_streaming_text()
        s.start_tool_call(payload.get("id", ""), payload.get("name", ""))

    def _on_tool_input_delta(self, payload: dict[str, Any]) -> None:
        self._store.append_tool_input(payload.get("id", ""), payload.get("partialJson", ""))

    def _on_tool_call(self, payload: dict[str, Any]) -> None:
        s = self._store
        s.flush_streaming_text()
        s.finalize_tool_call(payload.get("id", ""), payload.get("name", ""), payload.get("input"))

    def _on_tool_progress(self, payload: dict[str, Any]) -> None:
        logger.debug(
            "Tool %s running for %ss", payload.get("toolName"), payload.get("elapsed"),
        )

    def _on_tool_result(self, payload: dict[str, Any]) -> None:
        s = self._store
        tool_id = payload.get("toolUseId", "")
        result = payload.get("result")
        if payload.get("isError"):
            s.error_tool_call(tool_id, result if isinstance(result, str) else json.dumps(result))
        else:
            s.complete_tool_call(tool_id, result)
        if s.is_streaming:
            s.set_thinking(True)

    def _on_turn_complete(self, payload: dict[str, Any]) -> None:
        s = self._store
        s.flush_streaming_text()
        s.set_thinking(False)
        s.set_streaming(False)

    def _on_session_error(self, payload: dict[str, Any]) -> None:
        s = self._store
        s.flush_streaming_text()
        s.set_thinking(False)
        s.add_system_message(f"Session ended: {payload.get('subtype', '')}")
        s.set_streaming(False)

    def _on_custom_event(self, payload: dict[str, Any]) -> None:
        if self._on_custom is None:
            return
        self._on_custom(str(payload.get("name", "")), payload.get("value"))
