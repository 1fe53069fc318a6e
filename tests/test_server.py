from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from aiohttp.test_utils import AioHTTPTestCase

from agentwire.adapters.sse import SSEParser
from agentwire.engine.config import ServerConfig
from agentwire.engine.models import SessionStatus
from agentwire.engine.session import Session
from agentwire.web.server import AgentServer, default_session_factory


def _turn(text: str) -> list[dict]:
    return [
        {"type": "stream_event", "event": {"type": "message_start"}},
        {"type": "stream_event", "event": {
            "type": "content_block_delta", "delta": {"type": "text_delta", "text": f"echo: {text}"},
        }},
        {"type": "result", "subtype": "success", "num_turns": 1, "total_cost_usd": 0.01},
    ]


class _OneTurnRunner:
    """Answers the first prompt, then finishes."""

    def __init__(self, launch) -> None:
        self.launch = launch

    async def run(self, session: Session) -> None:
        async for text in session.prompts():
            for message in _turn(text):
                session.push(message)
            return


class _ToolRunner:
    def __init__(self, launch) -> None:
        self.launch = launch

    async def run(self, session: Session) -> None:
        async for _ in session.prompts():
            session.push({"type": "assistant", "message": {"content": [
                {"type": "tool_use", "id": "t1", "name": "Write", "input": {"file_path": "index.html"}},
            ]}})
            session.push({"type": "user", "message": {"content": [
                {"type": "tool_result", "tool_use_id": "t1", "content": "written"},
            ]}})
            return


class _CrashingRunner:
    def __init__(self, launch) -> None:
        pass

    async def run(self, session: Session) -> None:
        async for _ in session.prompts():
            raise RuntimeError("cli exited")


def _server(runner_factory=_OneTurnRunner, **config_kwargs) -> AgentServer:
    return AgentServer(
        ServerConfig(**config_kwargs),
        session_factory=lambda seed: {"context": {"seed": seed}},
        runner_factory=runner_factory,
    )


async def _read_events(resp) -> list:
    parser = SSEParser()
    frames = []
    async for raw in resp.content:
        frame = parser.feed(raw.decode("utf-8"))
        if frame is not None:
            frames.append(frame)
    return frames


class TestAgentServerApi(AioHTTPTestCase):
    async def get_application(self):
        self.agent_server = _server()
        return self.agent_server.app

    async def _create(self, **kwargs) -> str:
        resp = await self.client.post("/api/sessions", **kwargs)
        assert resp.status == 200
        return (await resp.json())["sessionId"]

    async def test_health(self):
        resp = await self.client.get("/health")
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "ok"
        assert body["sessions"] == 0

    async def test_create_and_list_sessions(self):
        session_id = await self._create()
        assert self.agent_server.sessions.get(session_id) is not None
        resp = await self.client.get("/api/sessions")
        sessions = (await resp.json())["sessions"]
        assert [s["sessionId"] for s in sessions] == [session_id]
        assert sessions[0]["status"] == "active"
        assert sessions[0]["streaming"] is False

    async def test_create_passes_json_seed_to_factory(self):
        session_id = await self._create(json={"project": "demo"})
        assert self.agent_server.sessions.get(session_id).context == {"seed": {"project": "demo"}}

    async def test_create_rejects_invalid_json(self):
        resp = await self.client.post(
            "/api/sessions", data="{nope", headers={"Content-Type": "application/json"},
        )
        assert resp.status == 400

    async def test_unknown_session_is_404(self):
        resp = await self.client.get("/api/sessions/missing/events")
        assert resp.status == 404
        assert await resp.json() == {"error": "Session not found"}
        resp = await self.client.post("/api/sessions/missing/messages", json={"text": "hi"})
        assert resp.status == 404
        resp = await self.client.post("/api/sessions/missing/abort")
        assert resp.status == 404
        resp = await self.client.delete("/api/sessions/missing")
        assert resp.status == 404

    async def test_message_validation(self):
        session_id = await self._create()
        url = f"/api/sessions/{session_id}/messages"
        assert (await self.client.post(url, json={})).status == 400
        assert (await self.client.post(url, json={"text": ""})).status == 400
        assert (await self.client.post(url, json={"text": 42})).status == 400
        resp = await self.client.post(
            url, data="not json", headers={"Content-Type": "application/json"},
        )
        assert resp.status == 400

    async def test_turn_streams_translated_events_in_order(self):
        session_id = await self._create()
        resp = await self.client.post(f"/api/sessions/{session_id}/messages", json={"text": "hi"})
        assert resp.status == 202
        assert await resp.json() == {"status": "accepted"}

        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/event-stream")
        frames = await asyncio.wait_for(_read_events(resp), timeout=5)

        assert [f.event for f in frames] == ["message_start", "text_delta", "turn_complete"]
        assert frames[1].data == '{"text":"echo: hi"}'
        assert frames[2].data == '{"numTurns":1,"cost":0.01}'
        # A cleanly finished session stays registered until deleted.
        assert self.agent_server.sessions.get(session_id) is not None

    async def test_second_stream_is_rejected_while_first_attached(self):
        session_id = await self._create()
        first = await self.client.get(f"/api/sessions/{session_id}/events")
        assert first.status == 200
        second = await self.client.get(f"/api/sessions/{session_id}/events")
        assert second.status == 409
        await self.client.post(f"/api/sessions/{session_id}/abort")
        assert await asyncio.wait_for(_read_events(first), timeout=2) == []

    async def test_abort_then_message_is_conflict(self):
        session_id = await self._create()
        resp = await self.client.post(f"/api/sessions/{session_id}/abort")
        assert await resp.json() == {"status": "aborted"}
        resp = await self.client.post(f"/api/sessions/{session_id}/messages", json={"text": "hi"})
        assert resp.status == 409
        # The aborted session's stream ends immediately.
        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        assert await asyncio.wait_for(_read_events(resp), timeout=2) == []
        assert self.agent_server.sessions.get(session_id).status is SessionStatus.ABORTED

    async def test_delete_evicts_session(self):
        session_id = await self._create()
        resp = await self.client.delete(f"/api/sessions/{session_id}")
        assert resp.status == 200
        assert await resp.json() == {"status": "evicted", "sessionId": session_id}
        assert self.agent_server.sessions.get(session_id) is None
        assert (await self.client.delete(f"/api/sessions/{session_id}")).status == 404

    async def test_tool_state_dropped_when_evicted_mid_stream(self):
        session_id = await self._create()
        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        session = self.agent_server.sessions.get(session_id)
        session.push({"type": "assistant", "message": {"content": [
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.txt"}},
        ]}})
        # Evicted before the attached reader drains the queued tool call.
        self.agent_server._evict(session_id)

        frames = await asyncio.wait_for(_read_events(resp), timeout=2)

        assert [f.event for f in frames] == ["tool_call"]
        assert self.agent_server.translator.open_tool(session_id) == (None, None)

    async def test_cleanup_closes_all_sessions(self):
        await self._create()
        await self._create()
        await self.agent_server._on_cleanup(self.agent_server.app)
        assert len(self.agent_server.sessions) == 0


class TestToolResultHook(AioHTTPTestCase):
    async def get_application(self):
        def _preview(tool_name, result, session):
            if tool_name in ("Write", "Edit"):
                return [{"name": "preview_reload", "value": {"sessionId": session.id}}]
            return []

        self.agent_server = AgentServer(
            ServerConfig(),
            session_factory=lambda seed: {"context": None},
            runner_factory=_ToolRunner,
            on_tool_result=_preview,
        )
        return self.agent_server.app

    async def test_custom_event_follows_tool_result(self):
        resp = await self.client.post("/api/sessions")
        session_id = (await resp.json())["sessionId"]
        await self.client.post(f"/api/sessions/{session_id}/messages", json={"text": "build it"})
        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        frames = await asyncio.wait_for(_read_events(resp), timeout=5)

        assert [f.event for f in frames] == ["tool_call", "tool_result", "custom"]
        assert frames[1].payload() == {"toolUseId": "t1", "result": "written"}
        assert frames[2].payload() == {"name": "preview_reload", "value": {"sessionId": session_id}}


class TestRunnerCrash(AioHTTPTestCase):
    async def get_application(self):
        self.agent_server = _server(runner_factory=_CrashingRunner)
        return self.agent_server.app

    async def test_crash_emits_session_error_and_evicts(self):
        resp = await self.client.post("/api/sessions")
        session_id = (await resp.json())["sessionId"]
        await self.client.post(f"/api/sessions/{session_id}/messages", json={"text": "go"})
        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        frames = await asyncio.wait_for(_read_events(resp), timeout=5)

        assert [f.event for f in frames] == ["session_error"]
        assert frames[0].payload() == {"subtype": "error_during_execution"}
        assert self.agent_server.sessions.get(session_id) is None


class TestKeepalive(AioHTTPTestCase):
    async def get_application(self):
        self.agent_server = _server(keepalive_seconds=0.05)
        return self.agent_server.app

    async def test_keepalive_sent_when_idle(self):
        resp = await self.client.post("/api/sessions")
        session_id = (await resp.json())["sessionId"]
        resp = await self.client.get(f"/api/sessions/{session_id}/events")
        line = await asyncio.wait_for(resp.content.readline(), timeout=2)
        assert line == b": keepalive\n"
        await self.client.post(f"/api/sessions/{session_id}/abort")
        resp.close()


class TestCustomPrefix(AioHTTPTestCase):
    async def get_application(self):
        self.agent_server = _server(api_prefix="/v1/agent")
        return self.agent_server.app

    async def test_routes_mounted_under_prefix(self):
        resp = await self.client.post("/v1/agent/sessions")
        session_id = (await resp.json())["sessionId"]
        assert (await self.client.get("/api/sessions")).status == 404
        resp = await self.client.get("/v1/agent/sessions")
        assert (await resp.json())["sessions"][0]["sessionId"] == session_id


def test_evict_idle_sessions():
    server = _server(session_idle_minutes=1)
    idle = server.sessions.create()
    fresh = server.sessions.create()
    attached = server.sessions.create()
    attached.messages()
    now = idle.last_activity_at + 120
    fresh.last_activity_at = now - 10
    attached.last_activity_at = idle.last_activity_at

    evicted = server.evict_idle_sessions(now=now)

    assert evicted == [idle.id]
    assert server.sessions.get(fresh.id) is fresh
    assert server.sessions.get(attached.id) is attached


def test_evict_idle_disabled_by_default():
    server = _server()
    session = server.sessions.create()
    assert server.evict_idle_sessions(now=session.last_activity_at + 10_000) == []


def test_default_factory_creates_sandbox_per_session():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = ServerConfig(sandbox_root=tmpdir, model="claude-haiku-4-5")
        factory = default_session_factory(config)
        first = factory(None)
        second = factory({"k": "v"})
        assert first.context["sandbox_dir"] != second.context["sandbox_dir"]
        assert Path(first.context["sandbox_dir"]).is_dir()
        assert first.launch.cwd == first.context["sandbox_dir"]
        assert first.launch.model == "claude-haiku-4-5"
        assert list(first.launch.hooks) == ["PreToolUse"]
        assert second.context["seed"] == {"k": "v"}


def test_default_factory_without_sandbox():
    init = default_session_factory(ServerConfig())(None)
    assert init.context == {}
    assert init.launch.cwd is None
    assert init.launch.hooks is None
