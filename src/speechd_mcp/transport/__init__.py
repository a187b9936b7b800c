"""Transport layer: address discovery and the socket connection."""

from .address import SpeechdAddress, get_speechd_address
from .socket_connection import SocketConnection, spawn_server
