"""Claude Agent SDK runner.

Drives one long-lived ``claude_agent_sdk.query()`` per session. User turns
submitted to the session are fed to the SDK through an async prompt
stream, and every message the SDK yields is pushed into the session queue
in raw-protocol dict form for the translator.
"""
from __future__ import annotations

import logging
import os
import shutil
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from ..models import AgentLaunchConfig

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)


class ClaudeAgentRunner:
    """AgentRunner backed by the Claude Agent SDK.

    Partial messages are always enabled so the session receives the
    token-level ``stream_event`` messages that carry text and tool-input
    deltas.
    """

    def __init__(self, launch: AgentLaunchConfig) -> None:
        self._launch = launch
        self._stderr_lines: list[str] = []

    @property
    def stderr_tail(self) -> list[str]:
        return self._stderr_lines[-20:]

    def build_options_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``ClaudeAgentOptions``."""
        launch = self._launch

        def _capture_stderr(line: str) -> None:
            self._stderr_lines.append(line)
            logger.debug("claude stderr: %s", line.rstrip())

        options_kwargs: dict[str, Any] = dict(
            permission_mode=launch.permission_mode,
            include_partial_messages=True,
            stderr=_capture_stderr,
        )
        if launch.system_prompt:
            options_kwargs["system_prompt"] = launch.system_prompt
        if launch.model:
            options_kwargs["model"] = launch.model
        if launch.cwd:
            options_kwargs["cwd"] = launch.cwd
        if launch.tools is not None:
            options_kwargs["tools"] = list(launch.tools)
        if launch.allowed_tools:
            options_kwargs["allowed_tools"] = list(launch.allowed_tools)
        if launch.disallowed_tools:
            options_kwargs["disallowed_tools"] = list(launch.disallowed_tools)
        if launch.max_turns is not None:
            options_kwargs["max_turns"] = launch.max_turns
        if launch.hooks:
            options_kwargs["hooks"] = launch.hooks
        options_kwargs.update(launch.extra_options)

        cli_path = os.getenv("AGENTWIRE_CLAUDE_CLI_PATH", "").strip()
        if cli_path:
            resolved_cli = shutil.which(cli_path)
            if resolved_cli:
                options_kwargs["cli_path"] = resolved_cli
            else:
                logger.warning(
                    "Configured Claude CLI not found: %s; falling back to SDK default",
                    cli_path,
                )
        return options_kwargs

    async def run(self, session: Session) -> None:
        # Import SDK lazily so the engine stays importable without it
        from claude_agent_sdk import ClaudeAgentOptions, query

        # The CLI refuses to start as a nested session when this is set.
        os.environ.pop("CLAUDECODE", None)

        options_kwargs = self.build_options_kwargs()
        logger.info(
            "Session %s starting query model=%s mode=%s cwd=%s hooks=%s cli=%s",
            session.id[:8],
            options_kwargs.get("model", "<default>"),
            options_kwargs.get("permission_mode"),
            options_kwargs.get("cwd", "<inherit>"),
            ",".join(options_kwargs.get("hooks") or {}) or "none",
            options_kwargs.get("cli_path", "<sdk-bundled>"),
        )
        options = ClaudeAgentOptions(**options_kwargs)

        try:
            async for message in query(prompt=_prompt_stream(session), options=options):
                payload = message_to_dict(message)
                if payload is None:
                    logger.debug(
                        "Session %s skipping unrecognized SDK message %s",
                        session.id[:8], type(message).__name__,
                    )
                    continue
                session.push(payload)
        except Exception:
            if self._stderr_lines:
                logger.error(
                    "Session %s claude stderr (last %d lines):\n%s",
                    session.id[:8], len(self.stderr_tail),
                    "\n".join(line.rstrip() for line in self.stderr_tail),
                )
            raise


async def _prompt_stream(session: Session) -> AsyncIterator[dict[str, Any]]:
    """Feed submitted user turns to the SDK as streaming-input messages."""
    async for text in session.prompts():
        logger.info("Session %s user turn len=%d", session.id[:8], len(text))
        yield {
            "type": "user",
            "message": {"role": "user", "content": text},
        }


# ── SDK objects -> raw protocol dicts ──


def message_to_dict(message: Any) -> dict[str, Any] | None:
    """Convert one SDK message to the raw protocol dict the translator reads.

    Dicts pass through untouched. SDK message objects are recognized by
    their attributes, so the conversion does not depend on SDK class
    identity.
    """
    if isinstance(message, dict):
        return message
    if hasattr(message, "event") and isinstance(getattr(message, "event"), dict):
        return {
            "type": "stream_event",
            "event": message.event,
            "session_id": getattr(message, "session_id", None),
            "parent_tool_use_id": getattr(message, "parent_tool_use_id", None),
        }
    if hasattr(message, "subtype") and hasattr(message, "num_turns"):
        return {
            "type": "result",
            "subtype": message.subtype,
            "num_turns": message.num_turns,
            "total_cost_usd": getattr(message, "total_cost_usd", None),
            "is_error": getattr(message, "is_error", False),
            "result": getattr(message, "result", None),
            "session_id": getattr(message, "session_id", None),
        }
    if hasattr(message, "subtype") and hasattr(message, "data"):
        return {"type": "system", "subtype": message.subtype, "data": message.data}
    if hasattr(message, "content"):
        if hasattr(message, "model"):
            return {
                "type": "assistant",
                "message": {
                    "role": "assistant",
                    "model": message.model,
                    "content": [block_to_dict(b) for b in message.content],
                },
                "parent_tool_use_id": getattr(message, "parent_tool_use_id", None),
            }
        content = message.content
        if not isinstance(content, str):
            content = [block_to_dict(b) for b in content]
        return {
            "type": "user",
            "message": {"role": "user", "content": content},
            "parent_tool_use_id": getattr(message, "parent_tool_use_id", None),
        }
    return None


def block_to_dict(block: Any) -> dict[str, Any]:
    """Convert one SDK content block to its raw protocol dict."""
    if isinstance(block, dict):
        return block
    if hasattr(block, "thinking"):
        return {"type": "thinking", "thinking": block.thinking or ""}
    if hasattr(block, "tool_use_id"):
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": getattr(block, "content", None),
            "is_error": bool(getattr(block, "is_error", False)),
        }
    if hasattr(block, "name") and hasattr(block, "input"):
        return {
            "type": "tool_use",
            "id": getattr(block, "id", ""),
            "name": block.name,
            "input": block.input,
        }
    if hasattr(block, "text"):
        return {"type": "text", "text": block.text}
    return {"type": type(block).__name__}
