"""Server-Sent Events framing for canonical output events.

Encoding is a pure function of one event. ``SSEParser`` is the matching
incremental decoder used by the Python client.
"""
from __future__ import annotations

from .events import OutputEvent, SSEEvent, to_sse

KEEPALIVE = b": keepalive\n\n"


def sse_encode(event: SSEEvent | OutputEvent) -> str:
    """Format one event as ``event: <kind>\\ndata: <json>\\n\\n``."""
    if isinstance(event, OutputEvent):
        event = to_sse(event)
    data = event.data or "{}"
    return f"event: {event.event}\ndata: {data}\n\n"


def encode(event: SSEEvent | OutputEvent) -> bytes:
    return sse_encode(event).encode("utf-8")


def keepalive() -> bytes:
    return KEEPALIVE


class SSEParser:
    """Incremental SSE decoder.

    Feed it one line at a time (with or without the trailing newline);
    a blank line completes a frame and ``feed`` returns it. Comment lines
    and unknown fields are ignored, several ``data:`` lines are joined
    with newlines, and a frame without ``event:`` gets kind ``message``.
    """

    def __init__(self) -> None:
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, line: str) -> SSEEvent | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None

    def feed_text(self, text: str) -> list[SSEEvent]:
        """Feed a chunk of complete lines; returns every completed frame."""
        frames: list[SSEEvent] = []
        # Only "\n" ends a line; payloads may carry raw U+2028 and friends.
        lines = text.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
        for line in lines:
            frame = self.feed(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _dispatch(self) -> SSEEvent | None:
        if self._event is None and not self._data:
            return None
        frame = SSEEvent(event=self._event or "message", data="\n".join(self._data))
        self._event = None
        self._data = []
        return frame
