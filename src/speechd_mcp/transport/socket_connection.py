"""Stream socket connection to Speech Dispatcher.

Supports both unix domain sockets (the server default) and TCP.
Reading is done line by line through a buffered file object; writes go
straight to the socket.
"""

from __future__ import annotations

import logging
import socket
import subprocess

from ..protocol.framing import TransportError
from .address import SpeechdAddress

logger = logging.getLogger(__name__)

SPAWN_COMMAND = ("speech-dispatcher", "--spawn")
SPAWN_TIMEOUT_S = 10.0
CONNECT_TIMEOUT_S = 5.0


def spawn_server() -> bool:
    """Ask ``speech-dispatcher`` to start unless it is already running.

    Failures are only logged: connecting afterwards reports whether a server
    is reachable.

    Returns:
        True if the spawn command ran and exited successfully.
    """
    try:
        result = subprocess.run(
            SPAWN_COMMAND,
            capture_output=True,
            timeout=SPAWN_TIMEOUT_S,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not spawn speech-dispatcher: %s", e)
        return False

    if result.returncode != 0:
        # --spawn exits non-zero when a server is already running
        logger.debug(
            "speech-dispatcher --spawn exited with %d: %s",
            result.returncode,
            result.stderr.decode("utf-8", errors="replace").strip(),
        )
        return False
    return True


class SocketConnection:
    """Manages the stream connection to the speech server.

    Usage::

        conn = SocketConnection(get_speechd_address())
        conn.open()
        conn.write(b"list output_modules\\r\\n")
        line = conn.read_line()
        conn.close()
    """

    def __init__(self, address: SpeechdAddress | None = None) -> None:
        self._address = address
        self._socket: socket.socket | None = None
        self._reader = None
        self._connected = False

    @classmethod
    def from_socket(cls, sock: socket.socket) -> SocketConnection:
        """Wrap a socket that is already connected."""
        conn = cls()
        conn._attach(sock)
        return conn

    def _attach(self, sock: socket.socket) -> None:
        self._socket = sock
        self._reader = sock.makefile("rb")
        self._connected = True

    def open(self) -> None:
        """Connect to the configured address.

        Raises:
            TransportError: If the server cannot be reached.
        """
        if self._address is None:
            raise TransportError("No address to connect to")

        sock = socket.socket(self._address.socket_family, socket.SOCK_STREAM)
        try:
            sock.settimeout(CONNECT_TIMEOUT_S)
            sock.connect(self._address.socket_address)
            sock.settimeout(None)
        except OSError as e:
            sock.close()
            raise TransportError(
                f"Could not connect to speech-dispatcher at {self._address}: {e}"
            ) from e

        self._attach(sock)
        logger.info("Connected to speech-dispatcher at %s", self._address)

    def close(self) -> None:
        """Close the connection.

        The read side is shut down first so that a thread blocked in
        :meth:`read_line` returns.
        """
        if not self._connected:
            return

        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown failed: %s", e)
        finally:
            self._reader.close()
            self._socket.close()
            self._connected = False
            logger.info("Disconnected")

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the server.

        Raises:
            TransportError: If not connected or the write fails.
        """
        if not self._connected:
            raise TransportError("Not connected to speech-dispatcher")

        logger.debug(">> %r", data)
        try:
            self._socket.sendall(data)
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    def read_line(self) -> bytes:
        """Read one raw line including its terminator.

        Returns:
            The line, or ``b""`` once the stream has ended.

        Raises:
            TransportError: If the read fails.
        """
        if not self._connected:
            raise TransportError("Not connected to speech-dispatcher")

        try:
            line = self._reader.readline()
        except (OSError, ValueError) as e:
            # ValueError: the file object was closed under us
            raise TransportError(f"Read failed: {e}") from e
        logger.debug("<< %r", line)
        return line
