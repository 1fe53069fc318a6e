"""Tests for agentwire.client.widgets: tool widget registry and Rich cards."""

from rich.console import Console
from rich.text import Text

from agentwire.client.store import ToolCallInfo, ToolCallStatus
from agentwire.client.widgets import (
    WidgetRegistration,
    get_widget,
    register_widget,
    render_header,
    render_tool_call,
    strip_mcp_prefix,
    unregister_widget,
)


def _render(renderable) -> str:
    console = Console(width=100, record=True, color_system=None)
    console.print(renderable)
    return console.export_text()


class TestRegistry:
    def test_strip_mcp_prefix(self):
        assert strip_mcp_prefix("mcp__preview__reload") == "reload"
        assert strip_mcp_prefix("mcp__a__b__c") == "b__c"
        assert strip_mcp_prefix("Read") == "Read"
        assert strip_mcp_prefix("mcp__only") == "mcp__only"

    def test_register_and_lookup(self):
        reg = register_widget(WidgetRegistration("search_docs", "Docs search"))
        try:
            assert get_widget("search_docs") is reg
            assert get_widget("mcp__docs__search_docs") is reg
        finally:
            unregister_widget("search_docs")
        assert get_widget("search_docs") is None

    def test_builtin_widgets_registered(self):
        assert get_widget("Read").label == "Read"
        assert get_widget("Bash").render is not None


class TestRendering:
    def test_registered_summary_in_header(self):
        tc = ToolCallInfo(id="t1", name="Write", input={"file_path": "/tmp/s/index.html"})
        header = render_header(tc)
        assert isinstance(header, Text)
        assert "Write" in header.plain
        assert "index.html" in header.plain

    def test_fallback_shows_raw_name_and_partial_input(self):
        tc = ToolCallInfo(
            id="t1", name="mystery_tool", partial_input='{"q": "abc',
            status=ToolCallStatus.STREAMING_INPUT,
        )
        out = _render(render_tool_call(tc))
        assert "mystery_tool" in out
        assert '{"q": "abc' in out
        assert "◌" in out

    def test_long_input_is_truncated(self):
        tc = ToolCallInfo(id="t1", name="mystery_tool", partial_input="x" * 500)
        assert "…" in render_header(tc).plain

    def test_error_result_rendered(self):
        tc = ToolCallInfo(id="t1", name="mystery_tool", error="permission denied", status=ToolCallStatus.ERROR)
        out = _render(render_tool_call(tc))
        assert "permission denied" in out
        assert "✗" in out

    def test_custom_render_used(self):
        register_widget(WidgetRegistration(
            "weather", "Weather",
            render=lambda tc: Text(f"{tc.result['temp']}°C"),
            summarize=lambda tc: tc.input.get("city"),
        ))
        try:
            tc = ToolCallInfo(
                id="t1", name="weather", input={"city": "Oslo"},
                result={"temp": 4}, status=ToolCallStatus.COMPLETE,
            )
            out = _render(render_tool_call(tc))
            assert "Weather" in out
            assert "Oslo" in out
            assert "4°C" in out
        finally:
            unregister_widget("weather")

    def test_bash_shows_tail_of_output(self):
        output = "\n".join(f"line {i}" for i in range(30))
        tc = ToolCallInfo(
            id="t1", name="Bash", input={"command": "seq 30"},
            result=output, status=ToolCallStatus.COMPLETE,
        )
        out = _render(render_tool_call(tc))
        assert "line 29" in out
        assert "line 19" not in out


def test_widget_api_exported_from_client_package():
    import agentwire.client as client
    from agentwire.client import widgets

    assert client.register_widget is widgets.register_widget
    assert client.render_tool_call is widgets.render_tool_call
    assert client.get_widget("Read") is widgets.get_widget("Read")
