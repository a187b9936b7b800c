"""Line framing for the Speech Synthesis Interface Protocol (SSIP).

Server messages are one or more CRLF-terminated lines::

    +----------+-----------+---------------------+
    |   Code   | Delimiter |        Text         |
    | 3 digits |  1 char   |  rest of the line   |
    +----------+-----------+---------------------+

- Delimiter ``-``: more lines of the same message follow
- Delimiter `` ``: last line of the message

Client commands are single CRLF-terminated lines. The body of a ``speak``
command is sent line by line and terminated by a line holding a single dot,
so body lines starting with a dot get that dot doubled.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

NEWLINE = "\r\n"
CONTINUATION = "-"
FINAL = " "
END_OF_DATA_MARKER = "."


class SSIPError(Exception):
    """Base class for errors raised while talking to the speech server."""


class TransportError(SSIPError):
    """The underlying connection failed or was closed."""


class MalformedFrame(SSIPError):
    """A server line could not be parsed as ``<code><delimiter><text>``."""


@dataclass
class ServerMessage:
    """A parsed server message.

    ``code`` always holds the code of the last line read.
    """

    code: int
    lines: list[str] = field(default_factory=list)

    def __repr__(self) -> str:
        return f"ServerMessage(code={self.code}, lines={self.lines!r})"


def parse_line(line: str) -> tuple[int, bool, str]:
    """Split one server line into ``(code, is_final, text)``.

    Raises:
        MalformedFrame: If the code or the delimiter is invalid.
    """
    if len(line) < 4:
        raise MalformedFrame(f"Line too short: {line!r}")

    code_text = line[:3]
    # str.isdigit() alone also accepts superscripts and non-ASCII digits
    if not (code_text.isascii() and code_text.isdigit()):
        raise MalformedFrame(f"Invalid result code: {code_text!r}")

    delimiter = line[3]
    if delimiter not in (CONTINUATION, FINAL):
        raise MalformedFrame(f"Invalid delimiter {delimiter!r} in line {line!r}")

    return int(code_text), delimiter == FINAL, line[4:]


def read_message(read_line: Callable[[], bytes]) -> ServerMessage:
    """Read lines until a complete server message has been received.

    Args:
        read_line: Returns the next raw line, or ``b""`` at end of stream.

    Raises:
        TransportError: If the stream ends before the final line.
        MalformedFrame: If a line cannot be decoded or parsed.
    """
    message = ServerMessage(code=0)
    while True:
        raw = read_line()
        if not raw:
            raise TransportError("Connection closed by server")

        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame(f"Undecodable line: {raw!r}") from e

        code, is_final, text = parse_line(line.rstrip("\r\n"))
        # Continuation lines share the code of the final line
        message.code = code
        message.lines.append(text)
        if is_final:
            return message


def encode_line(text: str) -> bytes:
    """Encode a command line for the wire."""
    return (text + NEWLINE).encode("utf-8")


def encode_speak_line(text: str) -> bytes:
    """Encode one line of a ``speak`` body, doubling a leading dot.

    ``text`` must not contain line breaks; splitting the body into lines is
    left to the caller.
    """
    if text.startswith(END_OF_DATA_MARKER):
        text = END_OF_DATA_MARKER + text
    return encode_line(text)
