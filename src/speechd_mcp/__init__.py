"""Speech Dispatcher client and MCP server."""

from .session import PendingMessage, Session, open_session
