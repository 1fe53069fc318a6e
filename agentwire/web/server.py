"""HTTP + SSE server bridging agent sessions to web clients.

Exposes a small REST API for creating sessions and submitting user turns,
and one Server-Sent Events stream per session carrying the canonical
output events produced by the MessageTranslator.

Usage:
    agentwire [--host HOST] [--port PORT] [--config PATH]
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import time
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from aiohttp import web

from agentwire.adapters.sandbox import build_sandbox_hooks
from agentwire.adapters.sse import encode, keepalive
from agentwire.engine.config import ServerConfig
from agentwire.engine.errors import SessionBusyError, SessionClosedError
from agentwire.engine.models import AgentLaunchConfig, SessionInit, SessionStatus
from agentwire.engine.session import RunnerFactory, Session, SessionFactory, SessionManager
from agentwire.engine.translator import MessageTranslator, ToolResultHook

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}


def default_session_factory(config: ServerConfig) -> SessionFactory:
    """Session factory applying the configured agent defaults.

    With ``config.sandbox_root`` set, each session gets a fresh directory
    under it: the agent runs there and the sandbox hook confines its file
    tools to it. The directory is exposed as ``context["sandbox_dir"]``.
    """

    def _factory(seed: Any) -> SessionInit:
        context: dict[str, Any] = {}
        if seed is not None:
            context["seed"] = seed
        launch = AgentLaunchConfig(
            model=config.model,
            system_prompt=config.system_prompt,
            permission_mode=config.permission_mode,
        )
        if config.sandbox_root:
            sandbox_dir = Path(config.sandbox_root) / uuid.uuid4().hex[:12]
            sandbox_dir.mkdir(parents=True, exist_ok=True)
            sandbox = str(sandbox_dir.resolve())
            launch.cwd = sandbox
            launch.hooks = build_sandbox_hooks(sandbox, allow_bash=config.allow_bash)
            context["sandbox_dir"] = sandbox
            logger.info("Created sandbox directory %s", sandbox)
        return SessionInit(context=context, launch=launch)

    return _factory


def default_runner_factory(launch: AgentLaunchConfig):
    from agentwire.engine.providers.claude_provider import ClaudeAgentRunner

    return ClaudeAgentRunner(launch)


class AgentServer:
    """HTTP + SSE server over a SessionManager.

    Thin adapter: session state lives in SessionManager and translation
    in MessageTranslator. This class only handles HTTP routing, the SSE
    writer loop and session housekeeping.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        sessions: SessionManager | None = None,
        translator: MessageTranslator | None = None,
        session_factory: SessionFactory | None = None,
        runner_factory: RunnerFactory | None = None,
        on_tool_result: ToolResultHook | None = None,
    ) -> None:
        self._config = config or ServerConfig()
        if sessions is None:
            sessions = SessionManager(
                session_factory or default_session_factory(self._config),
                runner_factory or default_runner_factory,
            )
        self._sessions = sessions
        self._translator = translator or MessageTranslator(on_tool_result)
        self._started_at = time.time()
        self._sweep_task: asyncio.Task | None = None
        self._idle_seconds = max(0.0, self._config.session_idle_minutes * 60.0)
        self._app = web.Application(middlewares=[self._request_logging_middleware])
        self._app.on_startup.append(self._on_startup)
        self._app.on_cleanup.append(self._on_cleanup)
        self._setup_routes()
        logger.info(
            "AgentServer init host=%s port=%s prefix=%s sandbox=%s pid=%s",
            self._config.host, self._config.port, self._config.api_prefix or "/",
            self._config.sandbox_root or "<none>", os.getpid(),
        )
        logger.info(
            "Session idle timeout: %.1f minutes",
            self._idle_seconds / 60.0 if self._idle_seconds > 0 else 0.0,
        )

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def translator(self) -> MessageTranslator:
        return self._translator

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        request["req_id"] = req_id
        start = time.monotonic()
        logger.info("HTTP %s %s req=%s from=%s", request.method, request.path_qs, req_id, request.remote)
        try:
            response = await handler(request)
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id,
                getattr(response, "status", "?"), elapsed_ms,
            )
            return response
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception("HTTP %s %s req=%s failed duration_ms=%.1f", request.method, request.path_qs, req_id, elapsed_ms)
            raise

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        p = self._config.api_prefix
        r.add_get("/health", self._handle_health)
        r.add_get(f"{p}/sessions", self._handle_list_sessions)
        r.add_post(f"{p}/sessions", self._handle_create_session)
        r.add_delete(f"{p}/sessions/{{id}}", self._handle_remove_session)
        r.add_get(f"{p}/sessions/{{id}}/events", self._handle_events)
        r.add_post(f"{p}/sessions/{{id}}/messages", self._handle_message)
        r.add_post(f"{p}/sessions/{{id}}/abort", self._handle_abort)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Serve until cancelled."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        await site.start()
        logger.info(
            "agentwire server listening on http://%s:%d%s",
            self._config.host, self._config.port, self._config.api_prefix,
        )
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await runner.cleanup()

    async def _on_startup(self, app: web.Application) -> None:
        if self._idle_seconds > 0:
            self._sweep_task = asyncio.create_task(self._idle_sweep_loop())

    async def _on_cleanup(self, app: web.Application) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        for session in self._sessions.list():
            self._translator.forget(session.id)
        closed = self._sessions.close_all()
        if closed:
            logger.info("Closed %d session(s) on shutdown", closed)

    async def _idle_sweep_loop(self) -> None:
        interval = min(30.0, max(1.0, self._idle_seconds / 2))
        try:
            while True:
                await asyncio.sleep(interval)
                self.evict_idle_sessions()
        except asyncio.CancelledError:
            pass

    def evict_idle_sessions(self, now: float | None = None) -> list[str]:
        """Evict sessions idle past the configured timeout.

        Sessions with an attached event stream are never evicted here.
        """
        if self._idle_seconds <= 0:
            return []
        evicted: list[str] = []
        for session in self._sessions.list():
            if session.reader_attached:
                continue
            idle_for = session.idle_seconds(now)
            if idle_for < self._idle_seconds:
                continue
            self._evict(session.id)
            evicted.append(session.id)
            logger.info(
                "Evicted idle session %s after %.1f minutes",
                session.id, idle_for / 60.0,
            )
        return evicted

    # ── Helpers ──

    def _evict(self, session_id: str) -> bool:
        self._translator.forget(session_id)
        return self._sessions.evict(session_id)

    def _require_session(self, request: web.Request) -> tuple[Session | None, web.Response | None]:
        """Return (session, None) or (None, 404 response)."""
        session = self._sessions.get(request.match_info["id"])
        if session is None:
            return None, web.json_response({"error": "Session not found"}, status=404)
        return session, None

    @staticmethod
    def _summarize(session: Session, now: float) -> dict[str, Any]:
        return {
            "sessionId": session.id,
            "status": session.status.value,
            "ageSeconds": round(now - session.created_at, 3),
            "idleSeconds": round(session.idle_seconds(now), 3),
            "streaming": session.reader_attached,
            "running": session.running,
        }

    # ── Handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "sessions": len(self._sessions),
            "session_idle_minutes": (
                self._idle_seconds / 60.0 if self._idle_seconds > 0 else 0.0
            ),
        })

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        now = time.monotonic()
        return web.json_response({
            "sessions": [self._summarize(s, now) for s in self._sessions.list()],
        })

    async def _handle_create_session(self, request: web.Request) -> web.Response:
        seed = None
        if request.can_read_body:
            try:
                seed = await request.json()
            except json.JSONDecodeError:
                return web.json_response({"error": "Invalid JSON body"}, status=400)
        if seed is not None and not isinstance(seed, Mapping):
            return web.json_response({"error": "Body must be a JSON object"}, status=400)
        session = self._sessions.create(seed)
        return web.json_response({"sessionId": session.id})

    async def _handle_remove_session(self, request: web.Request) -> web.Response:
        session_id = request.match_info["id"]
        if not self._evict(session_id):
            return web.json_response({"error": "Session not found"}, status=404)
        return web.json_response({"status": "evicted", "sessionId": session_id})

    async def _handle_abort(self, request: web.Request) -> web.Response:
        session, err = self._require_session(request)
        if err:
            return err
        session.abort()
        return web.json_response({"status": session.status.value})

    async def _handle_message(self, request: web.Request) -> web.Response:
        session, err = self._require_session(request)
        if err:
            return err
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return web.json_response({"error": "Invalid JSON body"}, status=400)
        text = body.get("text") if isinstance(body, Mapping) else None
        if not isinstance(text, str) or not text:
            return web.json_response({"error": "Missing text"}, status=400)
        try:
            session.submit(text)
        except SessionClosedError as exc:
            return web.json_response({"error": str(exc)}, status=409)
        logger.info("Message accepted session=%s len=%d", session.id[:8], len(text))
        return web.json_response({"status": "accepted"}, status=202)

    async def _handle_events(self, request: web.Request) -> web.StreamResponse:
        session, err = self._require_session(request)
        if err:
            return err
        try:
            stream = session.messages()
        except SessionBusyError as exc:
            return web.json_response({"error": str(exc)}, status=409)

        response = web.StreamResponse(status=200, headers=SSE_HEADERS)
        await response.prepare(request)
        req_id = request.get("req_id", "unknown")
        logger.info("SSE client attached session=%s req=%s", session.id[:8], req_id)

        sent = 0
        try:
            while True:
                try:
                    message = await asyncio.wait_for(
                        stream.__anext__(), timeout=self._config.keepalive_seconds,
                    )
                except asyncio.TimeoutError:
                    await response.write(keepalive())
                    continue
                except StopAsyncIteration:
                    break
                for event in self._translator.translate(message, session):
                    await response.write(encode(event))
                    sent += 1
        except ConnectionResetError:
            logger.info("SSE client went away session=%s req=%s", session.id[:8], req_id)
        finally:
            await stream.aclose()
            logger.info(
                "SSE client detached session=%s req=%s events=%d status=%s",
                session.id[:8], req_id, sent, session.status.value,
            )
            # Evicted while attached: draining may have rebuilt tool state.
            if session.id not in self._sessions:
                self._translator.forget(session.id)

        if session.status is SessionStatus.ERRORED and session.exhausted:
            self._evict(session.id)
        return response
