"""Protocol layer: line framing, command builders, and reply parsing."""

from .framing import (
    MalformedFrame,
    ServerMessage,
    SSIPError,
    TransportError,
    encode_line,
    encode_speak_line,
    read_message,
)
from .commands import EventCode
from .parser import EventNotification, ServerRejected
