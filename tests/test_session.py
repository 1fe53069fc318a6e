"""Tests for agentwire.engine.session: Session queueing, streaming and lifecycle."""

import asyncio

import pytest

from agentwire.engine.errors import SessionBusyError, SessionClosedError
from agentwire.engine.models import SessionStatus
from agentwire.engine.session import Session


async def _drain(session: Session) -> list:
    out = []
    async with session.messages() as stream:
        async for message in stream:
            out.append(message)
    return out


class _EchoRunner:
    """Pushes one result per submitted prompt."""

    def __init__(self) -> None:
        self.prompts: list[str] = []

    async def run(self, session: Session) -> None:
        async for text in session.prompts():
            self.prompts.append(text)
            session.push({"type": "result", "subtype": "success", "num_turns": 1, "prompt": text})


class _CrashingRunner:
    async def run(self, session: Session) -> None:
        async for _ in session.prompts():
            session.push({"type": "stream_event", "event": {"type": "message_start"}})
            raise RuntimeError("agent died")


class _BlockingRunner:
    def __init__(self) -> None:
        self.cancelled = False

    async def run(self, session: Session) -> None:
        try:
            async for _ in session.prompts():
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


@pytest.mark.asyncio
async def test_messages_delivered_in_push_order() -> None:
    session = Session("s1")
    for i in range(5):
        assert session.push({"n": i}) is True
    session.close()
    assert [m["n"] for m in await _drain(session)] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_stream_waits_for_push() -> None:
    session = Session("s1")
    received = []

    async def _reader() -> None:
        async for message in session.messages():
            received.append(message)

    task = asyncio.create_task(_reader())
    await asyncio.sleep(0)
    assert received == []
    session.push({"n": 1})
    await asyncio.sleep(0)
    assert received == [{"n": 1}]
    session.close()
    await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_second_reader_is_rejected() -> None:
    session = Session("s1")
    stream = session.messages()
    with pytest.raises(SessionBusyError):
        session.messages()
    await stream.aclose()


@pytest.mark.asyncio
async def test_reader_can_reattach_after_close_without_replay() -> None:
    session = Session("s1")
    session.push({"n": 1})
    session.push({"n": 2})
    stream = session.messages()
    assert await stream.__anext__() == {"n": 1}
    await stream.aclose()
    assert not session.reader_attached

    session.close()
    assert await _drain(session) == [{"n": 2}]


@pytest.mark.asyncio
async def test_exhausted_session_ends_immediately() -> None:
    session = Session("s1")
    session.close()
    assert await _drain(session) == []
    assert session.exhausted
    assert await _drain(session) == []


@pytest.mark.asyncio
async def test_push_after_abort_is_dropped_and_queued_messages_drain() -> None:
    session = Session("s1")
    session.push({"n": 1})
    session.abort()
    assert session.push({"n": 2}) is False
    assert await _drain(session) == [{"n": 1}]
    assert session.status is SessionStatus.ABORTED


@pytest.mark.asyncio
async def test_abort_is_idempotent() -> None:
    session = Session("s1")
    session.abort()
    session.abort()
    assert session.status is SessionStatus.ABORTED
    assert await _drain(session) == []


@pytest.mark.asyncio
async def test_submit_starts_runner_and_feeds_prompts() -> None:
    runner = _EchoRunner()
    session = Session("s1", runner=runner)
    session.submit("hello")
    session.submit("again")
    stream = session.messages()
    first = await asyncio.wait_for(stream.__anext__(), timeout=1)
    second = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert [first["prompt"], second["prompt"]] == ["hello", "again"]
    assert runner.prompts == ["hello", "again"]
    assert session.running
    session.abort()
    await stream.aclose()


@pytest.mark.asyncio
async def test_runner_crash_marks_session_errored() -> None:
    session = Session("s1", runner=_CrashingRunner())
    session.submit("go")
    messages = await asyncio.wait_for(_drain(session), timeout=1)
    assert messages[0]["type"] == "stream_event"
    assert messages[-1]["type"] == "result"
    assert messages[-1]["subtype"] == "error_during_execution"
    assert session.status is SessionStatus.ERRORED
    assert "agent died" in session.error
    with pytest.raises(SessionClosedError):
        session.submit("more")


@pytest.mark.asyncio
async def test_abort_cancels_runner() -> None:
    runner = _BlockingRunner()
    session = Session("s1", runner=runner)
    session.submit("go")
    await asyncio.sleep(0.01)
    assert session.running
    session.abort()
    await asyncio.sleep(0.01)
    assert runner.cancelled
    assert not session.running


@pytest.mark.asyncio
async def test_submit_after_abort_raises() -> None:
    session = Session("s1")
    session.abort()
    with pytest.raises(SessionClosedError):
        session.submit("hi")


@pytest.mark.asyncio
async def test_push_updates_last_activity() -> None:
    session = Session("s1")
    before = session.last_activity_at
    await asyncio.sleep(0.01)
    session.push({"type": "x"})
    assert session.last_activity_at > before
    assert session.idle_seconds(session.last_activity_at + 5) == pytest.approx(5)
