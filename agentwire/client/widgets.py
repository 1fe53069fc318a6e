"""Tool widget registry.

Maps a tool name to a WidgetRegistration that knows how to label, summarize
and render a tool call card with Rich. Unregistered tools fall back to a
raw card showing the tool name, phase glyph and a truncated input.

Registering a widget:

    register_widget(WidgetRegistration(
        tool_name="search",
        label="Search",
        summarize=lambda tc: tc.input.get("q", ""),
    ))
"""
from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.text import Text

from .store import ToolCallInfo, ToolCallStatus

PHASE_GLYPHS: dict[ToolCallStatus, tuple[str, str]] = {
    ToolCallStatus.PENDING: ("○", "dim"),
    ToolCallStatus.STREAMING_INPUT: ("◌", "cyan"),
    ToolCallStatus.RUNNING: ("◐", "yellow"),
    ToolCallStatus.COMPLETE: ("●", "green"),
    ToolCallStatus.ERROR: ("✗", "red"),
}

PREVIEW_CHARS = 120


@dataclass
class WidgetRegistration:
    tool_name: str
    label: str
    # Optional custom body; receives the tool call, returns a renderable.
    render: Callable[[ToolCallInfo], RenderableType] | None = None
    # Optional one-line summary shown next to the label.
    summarize: Callable[[ToolCallInfo], str | None] | None = None


_WIDGETS: dict[str, WidgetRegistration] = {}


def register_widget(registration: WidgetRegistration) -> WidgetRegistration:
    """Register (or replace) the widget for ``registration.tool_name``."""
    _WIDGETS[registration.tool_name] = registration
    return registration


def unregister_widget(tool_name: str) -> None:
    _WIDGETS.pop(tool_name, None)


def get_widget(tool_name: str) -> WidgetRegistration | None:
    """Look up by exact name first, then without an MCP server prefix."""
    found = _WIDGETS.get(tool_name)
    if found is None:
        found = _WIDGETS.get(strip_mcp_prefix(tool_name))
    return found


def strip_mcp_prefix(name: str) -> str:
    """``mcp__server__tool`` -> ``tool``; other names are unchanged."""
    if name.startswith("mcp__") and name.count("__") >= 2:
        return name.split("__", 2)[2]
    return name


def _trunc(text: str, length: int = PREVIEW_CHARS) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= length else text[: length - 1] + "…"


def _input_preview(tool_call: ToolCallInfo) -> str:
    if tool_call.input:
        try:
            return json.dumps(tool_call.input, ensure_ascii=False)
        except (TypeError, ValueError):
            return str(tool_call.input)
    return tool_call.partial_input


def _result_text(tool_call: ToolCallInfo) -> str:
    if tool_call.error:
        return tool_call.error
    result = tool_call.result
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


def render_header(tool_call: ToolCallInfo) -> Text:
    glyph, style = PHASE_GLYPHS[tool_call.status]
    widget = get_widget(tool_call.name)
    header = Text()
    header.append(f"{glyph} ", style=style)
    header.append(widget.label if widget else tool_call.name, style="bold")
    summary = None
    if widget and widget.summarize:
        summary = widget.summarize(tool_call)
    if summary is None and widget is None:
        summary = _input_preview(tool_call)
    if summary:
        header.append("  ")
        header.append(_trunc(summary), style="dim")
    return header


def render_tool_call(tool_call: ToolCallInfo) -> RenderableType:
    """Render one tool call as a Rich card."""
    widget = get_widget(tool_call.name)
    parts: list[RenderableType] = [render_header(tool_call)]
    if widget and widget.render:
        parts.append(widget.render(tool_call))
    else:
        result = _result_text(tool_call)
        if result:
            style = "red" if tool_call.status is ToolCallStatus.ERROR else ""
            parts.append(Text(_trunc(result, PREVIEW_CHARS * 2), style=style))
    _, border = PHASE_GLYPHS[tool_call.status]
    return Panel(Group(*parts), border_style=border, expand=False)


# ── Built-in widgets ──


def _path_summary(tool_call: ToolCallInfo) -> str | None:
    tool_input = tool_call.input if isinstance(tool_call.input, dict) else {}
    path = tool_input.get("file_path") or tool_input.get("path") or tool_input.get("notebook_path")
    return os.path.basename(path) if path else None


def _bash_summary(tool_call: ToolCallInfo) -> str | None:
    tool_input = tool_call.input if isinstance(tool_call.input, dict) else {}
    return tool_input.get("command") or None


def _pattern_summary(tool_call: ToolCallInfo) -> str | None:
    tool_input = tool_call.input if isinstance(tool_call.input, dict) else {}
    return tool_input.get("pattern") or None


def _render_bash(tool_call: ToolCallInfo) -> RenderableType:
    output = _result_text(tool_call)
    lines = output.splitlines()[-10:]
    style = "red" if tool_call.status is ToolCallStatus.ERROR else "dim"
    return Text("\n".join(lines), style=style)


for _registration in (
    WidgetRegistration("Read", "Read", summarize=_path_summary),
    WidgetRegistration("Write", "Write", summarize=_path_summary),
    WidgetRegistration("Edit", "Edit", summarize=_path_summary),
    WidgetRegistration("NotebookEdit", "Notebook", summarize=_path_summary),
    WidgetRegistration("Bash", "Bash", render=_render_bash, summarize=_bash_summary),
    WidgetRegistration("Grep", "Search", summarize=_pattern_summary),
    WidgetRegistration("Glob", "Find files", summarize=_pattern_summary),
):
    register_widget(_registration)
