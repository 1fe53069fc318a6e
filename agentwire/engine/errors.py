"""Exception hierarchy for the session engine.

Every failure here is session-scoped; none of them is fatal to the
server process.
"""
from __future__ import annotations


class AgentWireError(Exception):
    """Base exception for all agentwire errors."""


class SessionNotFoundError(AgentWireError):
    """No live session is registered under the given id."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionBusyError(AgentWireError):
    """Another reader is already attached to the session's message stream."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"Session {session_id} already has an attached event stream"
        )


class SessionClosedError(AgentWireError):
    """The session was aborted or failed and accepts no more user turns."""
    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(f"Session {session_id} is {status}")


class ConfigError(AgentWireError):
    """Configuration file or environment value could not be used."""
