"""Python client mirroring the browser chat state machine."""
from .dispatch import EventDispatcher
from .store import ChatMessage, ChatStore, ToolCallInfo, ToolCallStatus
from .stream import AgentClient, AgentClientError
from .widgets import WidgetRegistration, get_widget, register_widget, render_tool_call

__all__ = [
    "AgentClient",
    "AgentClientError",
    "ChatMessage",
    "ChatStore",
    "EventDispatcher",
    "ToolCallInfo",
    "ToolCallStatus",
    "WidgetRegistration",
    "get_widget",
    "register_widget",
    "render_tool_call",
]
