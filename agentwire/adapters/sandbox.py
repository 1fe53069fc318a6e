"""Filesystem sandbox guard for agent tool calls.

``check_tool_access`` is the policy; ``make_sandbox_hook`` wraps it as a
Claude Agent SDK PreToolUse hook, and ``build_sandbox_hooks`` returns the
``hooks`` mapping for ``ClaudeAgentOptions``.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Tool input keys that carry a filesystem path
PATH_KEYS = ("file_path", "path", "notebook_path")

# Tools that run shell commands, which cannot be confined by path checks
BASH_TOOLS = frozenset({"Bash", "BashOutput", "KillShell"})

OUTSIDE_SANDBOX_REASON = "Access outside sandbox directory is not allowed"
BASH_BLOCKED_REASON = "Bash is blocked in sandbox mode"


@dataclass(frozen=True)
class SandboxDecision:
    allowed: bool
    reason: str = ""


def is_within(root: str, candidate: str) -> bool:
    """True if *candidate* is *root* itself or a descendant of it.

    Both paths are made absolute and normalized, so ``..`` segments cannot
    escape, and a sibling sharing the root as a string prefix is not
    inside it.
    """
    root_abs = os.path.abspath(root)
    target = os.path.abspath(candidate)
    if target == root_abs:
        return True
    prefix = root_abs if root_abs.endswith(os.sep) else root_abs + os.sep
    return target.startswith(prefix)


def check_tool_access(
    sandbox_dir: str,
    tool_name: str,
    tool_input: Mapping[str, Any] | None,
    allow_bash: bool = False,
) -> SandboxDecision:
    """Decide whether a tool call stays inside *sandbox_dir*.

    Relative paths are resolved against the sandbox root, which is the
    agent's working directory.
    """
    if _normalize_tool_name(tool_name) in BASH_TOOLS and not allow_bash:
        return SandboxDecision(False, BASH_BLOCKED_REASON)
    if not isinstance(tool_input, Mapping):
        return SandboxDecision(True)
    root = os.path.abspath(sandbox_dir)
    for key in PATH_KEYS:
        value = tool_input.get(key)
        if not isinstance(value, str) or not value:
            continue
        if not is_within(root, os.path.join(root, value)):
            return SandboxDecision(False, OUTSIDE_SANDBOX_REASON)
    return SandboxDecision(True)


def make_sandbox_hook(sandbox_dir: str, allow_bash: bool = False):
    """Build an async PreToolUse hook confining tools to *sandbox_dir*.

    The hook returns ``{}`` to allow and the SDK deny shape otherwise.
    Events other than PreToolUse are ignored.
    """

    async def _sandbox_hook(input_data, tool_use_id, context):
        if isinstance(input_data, Mapping):
            event_name = input_data.get("hook_event_name")
            tool_name = input_data.get("tool_name", "")
            tool_input = input_data.get("tool_input", {})
        else:
            event_name = getattr(input_data, "hook_event_name", None)
            tool_name = getattr(input_data, "tool_name", "")
            tool_input = getattr(input_data, "tool_input", {})

        if event_name is not None and event_name != "PreToolUse":
            return {}

        decision = check_tool_access(sandbox_dir, tool_name, tool_input, allow_bash)
        if decision.allowed:
            return {}

        logger.info(
            "HOOK_SANDBOX_DENY tool=%s root=%s reason=%s",
            tool_name, sandbox_dir, decision.reason,
        )
        return {
            "hookSpecificOutput": {
                "hookEventName": "PreToolUse",
                "permissionDecision": "deny",
                "permissionDecisionReason": decision.reason,
            }
        }

    return _sandbox_hook


def build_sandbox_hooks(sandbox_dir: str, allow_bash: bool = False) -> dict:
    """``hooks`` mapping for ClaudeAgentOptions with the sandbox guard."""
    from claude_agent_sdk import HookMatcher

    return {
        "PreToolUse": [
            HookMatcher(matcher=None, hooks=[make_sandbox_hook(sandbox_dir, allow_bash)]),
        ],
    }


def _normalize_tool_name(name: str) -> str:
    """Strip an MCP server prefix (``mcp__server__Bash`` -> ``Bash``)."""
    if name.startswith("mcp__"):
        parts = name.split("__", 2)
        if len(parts) == 3:
            return parts[2]
    return name
