"""HTTP + SSE server."""
from .server import AgentServer

__all__ = ["AgentServer"]
