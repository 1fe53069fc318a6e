"""aiohttp client for an agentwire server.

Creates a session, submits user turns and consumes the session's event
stream into a ChatStore through an EventDispatcher.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import aiohttp

from agentwire.adapters.events import SSEEvent
from agentwire.adapters.sse import SSEParser
from agentwire.engine.config import normalize_prefix
from agentwire.engine.errors import AgentWireError

from .dispatch import CustomHandler, EventDispatcher
from .store import ChatStore

logger = logging.getLogger(__name__)


class AgentClientError(AgentWireError):
    """The server answered a request with an error status."""
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"HTTP {status}: {message}")


class AgentClient:
    """Client for one conversation.

    ``http`` may be an existing ``aiohttp.ClientSession`` (or anything with
    the same request methods); otherwise one is opened on ``__aenter__``
    and closed on ``__aexit__``.
    """

    def __init__(
        self,
        base_url: str = "",
        store: ChatStore | None = None,
        *,
        endpoint: str = "/api",
        on_custom: CustomHandler | None = None,
        http: Any = None,
    ) -> None:
        self._base = base_url.rstrip("/") + normalize_prefix(endpoint)
        self.store = store or ChatStore()
        self.dispatcher = EventDispatcher(self.store, on_custom)
        self._http = http
        self._owns_http = http is None

    async def __aenter__(self) -> AgentClient:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    @property
    def session_id(self) -> str | None:
        return self.store.session_id

    def _require_http(self) -> Any:
        if self._http is None:
            raise RuntimeError("AgentClient is not open; use 'async with AgentClient(...)'")
        return self._http

    def _require_session_id(self) -> str:
        if not self.store.session_id:
            raise RuntimeError("No session; call create_session() first")
        return self.store.session_id

    # ── Requests ──

    async def create_session(self, seed: Mapping[str, Any] | None = None) -> str:
        http = self._require_http()
        kwargs = {"json": dict(seed)} if seed is not None else {}
        async with http.post(f"{self._base}/sessions", **kwargs) as resp:
            data = await _json_or_raise(resp)
        session_id = data["sessionId"]
        self.store.set_session_id(session_id)
        logger.info("Created session %s", session_id)
        return session_id

    async def send_message(self, text: str) -> None:
        """Record the user turn locally, then submit it."""
        session_id = self._require_session_id()
        http = self._require_http()
        s = self.store
        s.add_user_message(text)
        s.set_streaming(True)
        s.set_thinking(True)
        async with http.post(
            f"{self._base}/sessions/{session_id}/messages", json={"text": text},
        ) as resp:
            await _json_or_raise(resp)

    async def abort(self) -> str:
        session_id = self._require_session_id()
        http = self._require_http()
        async with http.post(f"{self._base}/sessions/{session_id}/abort") as resp:
            data = await _json_or_raise(resp)
        return data.get("status", "")

    async def delete_session(self) -> None:
        session_id = self._require_session_id()
        http = self._require_http()
        async with http.delete(f"{self._base}/sessions/{session_id}") as resp:
            await _json_or_raise(resp)
        self.store.reset()

    # ── Event stream ──

    async def events(self) -> AsyncIterator[SSEEvent]:
        """Yield decoded frames from the session's event stream."""
        session_id = self._require_session_id()
        http = self._require_http()
        parser = SSEParser()
        async with http.get(
            f"{self._base}/sessions/{session_id}/events",
            headers={"Accept": "text/event-stream"},
        ) as resp:
            if resp.status != 200:
                await _json_or_raise(resp)
            async for raw in resp.content:
                frame = parser.feed(raw.decode("utf-8"))
                if frame is not None:
                    yield frame

    async def listen(self) -> None:
        """Apply the event stream to the store until it ends."""
        try:
            await self.dispatcher.run(self.events())
        except aiohttp.ClientError as exc:
            logger.warning("Event stream for %s ended: %s", self.session_id, exc)


async def _json_or_raise(resp: Any) -> dict[str, Any]:
    try:
        data = await resp.json()
    except (aiohttp.ContentTypeError, ValueError):
        data = {"error": await resp.text()}
    if resp.status >= 400:
        message = data.get("error", "") if isinstance(data, dict) else str(data)
        raise AgentClientError(resp.status, message)
    return data if isinstance(data, dict) else {}
