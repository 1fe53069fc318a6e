"""Core data models for the session engine.

Dataclasses and enums shared by the session manager, the agent runner
and the HTTP server. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    """Session lifecycle states."""
    ACTIVE = "active"
    ABORTED = "aborted"
    ERRORED = "errored"


class PermissionMode(str, Enum):
    """Maps to claude_agent_sdk permission modes."""
    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    BYPASS = "bypassPermissions"
    PLAN = "plan"


def make_session_id() -> str:
    return str(uuid.uuid4())


@dataclass
class AgentLaunchConfig:
    """How to start the agent process backing one session.

    Field names follow ClaudeAgentOptions. Keys the session factory
    returns that have no field here are kept in ``extra_options`` and
    passed through to the SDK untouched.
    """
    model: str | None = None
    system_prompt: str | None = None
    cwd: str | None = None
    tools: list[str] | None = None
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    permission_mode: str = PermissionMode.DEFAULT.value
    max_turns: int | None = None
    hooks: dict[str, Any] | None = field(default=None, repr=False)
    extra_options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AgentLaunchConfig:
        """Build a launch config from a plain mapping.

        Accepts both snake_case and the camelCase spelling used by the
        JavaScript SDK (``systemPrompt``, ``permissionMode``, ...).
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name in known and name != "extra_options":
                kwargs[name] = value
            else:
                extra[name] = value
        if isinstance(kwargs.get("permission_mode"), PermissionMode):
            kwargs["permission_mode"] = kwargs["permission_mode"].value
        config = cls(**kwargs)
        config.extra_options.update(extra)
        return config


@dataclass
class SessionInit:
    """What a session factory returns: caller context plus launch config."""
    context: Any = None
    launch: AgentLaunchConfig = field(default_factory=AgentLaunchConfig)

    @classmethod
    def coerce(cls, value: Any) -> SessionInit:
        """Accept a SessionInit or a ``{"context": ..., **launch}`` mapping."""
        if isinstance(value, SessionInit):
            return value
        if isinstance(value, Mapping):
            data = dict(value)
            context = data.pop("context", None)
            return cls(context=context, launch=AgentLaunchConfig.from_mapping(data))
        raise TypeError(
            f"Session factory must return SessionInit or a mapping, got {type(value).__name__}"
        )


def _snake_case(name: str) -> str:
    out: list[str] = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")
