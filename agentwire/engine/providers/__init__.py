"""Agent runners backing a session."""
from .claude_provider import ClaudeAgentRunner, message_to_dict

__all__ = [
    "ClaudeAgentRunner",
    "message_to_dict",
]
