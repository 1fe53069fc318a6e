"""Session state and the session table.

A Session owns one conversation: the caller's context payload, the FIFO of
raw agent messages waiting to be streamed, the queue of user turns waiting
for the agent, and the task running the agent itself. SessionManager owns
the only table of live sessions.

Everything here runs on one asyncio loop. Table mutations are synchronous
(no await between check and insert), so they are atomic with respect to
each other.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any, Protocol

from .errors import SessionBusyError, SessionClosedError, SessionNotFoundError
from .models import AgentLaunchConfig, SessionInit, SessionStatus, make_session_id

logger = logging.getLogger(__name__)

# Marks the end of a session's message or prompt queue.
_END = object()


class AgentRunner(Protocol):
    """Drives the agent for one session.

    ``run`` consumes ``session.prompts()`` and pushes every agent message
    with ``session.push``. Returning ends the session's stream; raising
    marks the session as errored.
    """

    async def run(self, session: Session) -> None: ...


SessionFactory = Callable[[Any], "SessionInit | Mapping[str, Any]"]
RunnerFactory = Callable[[AgentLaunchConfig], AgentRunner]


class MessageStream:
    """Single-pass async iterator over a session's queued agent messages.

    Only one stream per session may be open at a time. Closing the stream
    (``aclose`` or leaving ``async with``) releases the subscription so a
    reconnecting client can attach again; messages already consumed are
    not replayed.
    """

    def __init__(self, session: Session) -> None:
        self._session = session
        self._closed = False

    def __aiter__(self) -> MessageStream:
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        session = self._session
        if session._exhausted:
            self._release()
            raise StopAsyncIteration
        item = await session._queue.get()
        if item is _END:
            session._exhausted = True
            self._release()
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        self._release()

    async def __aenter__(self) -> MessageStream:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def _release(self) -> None:
        if not self._closed:
            self._closed = True
            self._session._reader_attached = False


class Session:
    """One conversation between an agent instance and a client."""

    def __init__(
        self,
        session_id: str,
        context: Any = None,
        launch: AgentLaunchConfig | None = None,
        runner: AgentRunner | None = None,
    ) -> None:
        self.id = session_id
        self.context = context
        self.launch = launch or AgentLaunchConfig()
        self.created_at = time.monotonic()
        self.last_activity_at = self.created_at
        self.status = SessionStatus.ACTIVE
        self.error: str | None = None
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._prompts: asyncio.Queue[Any] = asyncio.Queue()
        self._runner = runner
        self._runner_task: asyncio.Task | None = None
        self._reader_attached = False
        self._exhausted = False
        self._ended = False
        self._abort_requested = False

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, status={self.status.value!r})"

    # ── Agent side ──

    def push(self, message: Any) -> bool:
        """Enqueue a raw agent message. Never blocks.

        Returns False when the message was dropped because the session
        already ended (aborted, failed or closed).
        """
        if self._ended:
            logger.debug(
                "Session %s dropped agent message after end (status=%s)",
                self.id[:8], self.status.value,
            )
            return False
        self._queue.put_nowait(message)
        self.last_activity_at = time.monotonic()
        return True

    async def prompts(self) -> AsyncIterator[str]:
        """Yield submitted user turns until the session ends."""
        while True:
            item = await self._prompts.get()
            if item is _END:
                return
            yield item

    def close(self) -> None:
        """Signal that the agent computation finished.

        Already queued messages stay readable; the stream ends after them.
        """
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(_END)
        self._prompts.put_nowait(_END)

    def fail(self, reason: str) -> None:
        """Mark the session as errored and end its stream.

        The reader receives a synthetic non-success result first, which
        translates to a ``session_error`` event.
        """
        if self._ended:
            return
        logger.warning("Session %s failed: %s", self.id[:8], reason)
        self.push({
            "type": "result",
            "subtype": "error_during_execution",
            "is_error": True,
            "error": reason,
        })
        self.status = SessionStatus.ERRORED
        self.error = reason
        self.close()

    # ── Client side ──

    def messages(self) -> MessageStream:
        """Attach the single reader to this session's message queue."""
        if self._reader_attached:
            raise SessionBusyError(self.id)
        self._reader_attached = True
        return MessageStream(self)

    def submit(self, text: str) -> None:
        """Queue a user turn for the agent, starting the runner if needed."""
        if self._ended or self.status is not SessionStatus.ACTIVE:
            raise SessionClosedError(self.id, self.status.value)
        self._prompts.put_nowait(text)
        self.last_activity_at = time.monotonic()
        self._ensure_runner()

    def abort(self) -> None:
        """Cancel the agent computation. Idempotent.

        Messages pushed afterwards are dropped; messages queued before
        the abort are still delivered to the reader.
        """
        if self._abort_requested:
            return
        self._abort_requested = True
        if self.status is SessionStatus.ACTIVE:
            self.status = SessionStatus.ABORTED
        self.close()
        task = self._runner_task
        if task is not None and not task.done():
            task.cancel()
        logger.info("Session %s aborted", self.id[:8])

    # ── Introspection ──

    @property
    def reader_attached(self) -> bool:
        return self._reader_attached

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def exhausted(self) -> bool:
        """True once a reader consumed the end of the stream."""
        return self._exhausted

    @property
    def running(self) -> bool:
        return self._runner_task is not None and not self._runner_task.done()

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity_at

    # ── Runner task ──

    def _ensure_runner(self) -> None:
        if self._runner is None or self._runner_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._runner_task = loop.create_task(
            self._run_agent(), name=f"agent-{self.id[:8]}",
        )

    async def _run_agent(self) -> None:
        logger.info("Session %s agent runner starting", self.id[:8])
        try:
            await self._runner.run(self)
        except asyncio.CancelledError:
            logger.info("Session %s agent runner cancelled", self.id[:8])
            raise
        except Exception as exc:
            logger.exception("Session %s agent runner crashed", self.id[:8])
            self.fail(f"{type(exc).__name__}: {exc}")
        else:
            logger.info("Session %s agent runner finished", self.id[:8])
            self.close()


class SessionManager:
    """Owns the table of live sessions.

    ``factory(seed)`` returns a SessionInit, or a mapping with a
    ``context`` key plus agent launch options. ``runner_factory`` builds
    the AgentRunner for a launch config; without one, sessions only
    carry messages pushed by the caller.
    """

    def __init__(
        self,
        factory: SessionFactory,
        runner_factory: RunnerFactory | None = None,
    ) -> None:
        self._factory = factory
        self._runner_factory = runner_factory
        self._sessions: dict[str, Session] = {}

    def create(self, seed: Any = None) -> Session:
        init = SessionInit.coerce(self._factory(seed))
        session_id = make_session_id()
        runner = self._runner_factory(init.launch) if self._runner_factory else None
        session = Session(
            session_id,
            context=init.context,
            launch=init.launch,
            runner=runner,
        )
        self._sessions[session_id] = session
        logger.info(
            "Session created id=%s model=%s cwd=%s active_sessions=%d",
            session_id, init.launch.model or "<default>",
            init.launch.cwd or "<inherit>", len(self._sessions),
        )
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def evict(self, session_id: str) -> bool:
        """Remove a session and abort its agent. No-op for unknown ids."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.abort()
        logger.info(
            "Session evicted id=%s status=%s active_sessions=%d",
            session_id, session.status.value, len(self._sessions),
        )
        return True

    def list(self) -> list[Session]:
        return list(self._sessions.values())

    def close_all(self) -> int:
        ids = list(self._sessions)
        for session_id in ids:
            self.evict(session_id)
        return len(ids)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
