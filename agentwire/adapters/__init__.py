"""Adapters package - wire format and tool guards between engine and clients.

Canonical output events, their SSE framing, and the sandbox hook that
confines agent file tools.
"""
from __future__ import annotations

__all__ = [
    "OutputEvent",
    "SSEEvent",
    "SSEParser",
    "check_tool_access",
    "sse_encode",
]

from agentwire.adapters.events import OutputEvent, SSEEvent
from agentwire.adapters.sandbox import check_tool_access
from agentwire.adapters.sse import SSEParser, sse_encode
