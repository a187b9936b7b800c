"""Interpretation of server messages."""

from __future__ import annotations

from dataclasses import dataclass

from .commands import EventCode
from .framing import ServerMessage, SSIPError


class ServerRejected(SSIPError):
    """The server answered a command with a code outside the 2xx band."""

    def __init__(self, code: int, lines: list[str]) -> None:
        super().__init__(f"Server error: {code} {lines}")
        self.code = code
        self.lines = lines


@dataclass
class EventNotification:
    """Parsed asynchronous event (7xx) message.

    The first line carries the message id and the second one the client id.
    Index mark events add the mark name as a third line.
    """

    code: int
    message_id: str
    client_id: str | None = None
    index_mark: str | None = None

    @property
    def event(self) -> EventCode | None:
        try:
            return EventCode(self.code)
        except ValueError:
            return None


def is_success(code: int) -> bool:
    return 200 <= code <= 299


def is_event(code: int) -> bool:
    return 700 <= code <= 799


def require_success(message: ServerMessage) -> ServerMessage:
    """Return ``message`` unchanged, or raise if the command failed.

    Raises:
        ServerRejected: If the code is outside 200-299.
    """
    if not is_success(message.code):
        raise ServerRejected(message.code, message.lines)
    return message


def parse_list(message: ServerMessage) -> list[str]:
    """Unwrap a listing reply.

    The last line is the status text of the reply, not an entry.
    """
    return message.lines[:-1]


def parse_message_id(message: ServerMessage) -> str:
    """Return the id the server assigned to a queued message."""
    return message.lines[0]


def parse_event(message: ServerMessage) -> EventNotification | None:
    """Parse an event message, or return ``None`` for any other code."""
    if not is_event(message.code):
        return None

    lines = message.lines
    return EventNotification(
        code=message.code,
        message_id=lines[0],
        # The final line is the event name, so data lines end one earlier
        client_id=lines[1] if len(lines) > 2 else None,
        index_mark=lines[2] if message.code == EventCode.INDEX_MARK and len(lines) > 3 else None,
    )
