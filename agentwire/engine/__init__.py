"""Session engine: session lifecycle, agent runner and message translation."""
from .models import AgentLaunchConfig, PermissionMode, SessionInit, SessionStatus
from .config import ServerConfig
from .errors import (
    AgentWireError,
    ConfigError,
    SessionBusyError,
    SessionClosedError,
    SessionNotFoundError,
)
from .session import AgentRunner, MessageStream, Session, SessionManager
from .translator import MessageTranslator

__all__ = [
    "AgentLaunchConfig",
    "AgentRunner",
    "AgentWireError",
    "ConfigError",
    "MessageStream",
    "MessageTranslator",
    "PermissionMode",
    "ServerConfig",
    "Session",
    "SessionBusyError",
    "SessionClosedError",
    "SessionInit",
    "SessionManager",
    "SessionNotFoundError",
    "SessionStatus",
]
