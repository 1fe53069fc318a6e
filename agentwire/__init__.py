"""agentwire: bridge long-running agent sessions to web clients over SSE."""

__version__ = "0.1.0"
