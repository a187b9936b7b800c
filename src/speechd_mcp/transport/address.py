"""Speech Dispatcher address discovery.

Addresses use the server's own notation::

    unix_socket[:<path>]
    inet_socket[:<host>:<port>]

The ``SPEECHD_ADDRESS`` environment variable overrides the default, which
is the per-user unix socket under ``XDG_RUNTIME_DIR``.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass

ADDRESS_ENV = "SPEECHD_ADDRESS"
RUNTIME_DIR_ENV = "XDG_RUNTIME_DIR"
DEFAULT_SOCKET_NAME = "speech-dispatcher/speechd.sock"
DEFAULT_INET_TARGET = "127.0.0.1:6560"

UNIX_SOCKET = "unix_socket"
INET_SOCKET = "inet_socket"


def default_socket_path() -> str:
    return os.path.join(os.environ.get(RUNTIME_DIR_ENV, ""), DEFAULT_SOCKET_NAME)


@dataclass(frozen=True)
class SpeechdAddress:
    """Where to reach the speech server."""

    method: str
    target: str

    @classmethod
    def parse(cls, text: str) -> SpeechdAddress:
        """Parse an address string, filling in the default target if absent.

        Raises:
            ValueError: If the method is neither ``unix_socket`` nor
                ``inet_socket``.
        """
        method, _, target = text.partition(":")
        if method == UNIX_SOCKET:
            return cls(method, target or default_socket_path())
        if method == INET_SOCKET:
            return cls(method, target or DEFAULT_INET_TARGET)
        raise ValueError(f"Invalid speechd address specification: {text!r}")

    @property
    def socket_family(self) -> int:
        return socket.AF_UNIX if self.method == UNIX_SOCKET else socket.AF_INET

    @property
    def socket_address(self) -> str | tuple[str, int]:
        """Path for unix sockets, ``(host, port)`` for TCP."""
        if self.method == UNIX_SOCKET:
            return self.target
        host, _, port = self.target.rpartition(":")
        if not host or not port.isdigit():
            raise ValueError(f"Invalid inet_socket target: {self.target!r}")
        return host, int(port)

    def __str__(self) -> str:
        return f"{self.method}:{self.target}"


def get_speechd_address() -> SpeechdAddress:
    """Resolve the address from the environment."""
    text = os.environ.get(ADDRESS_ENV)
    if text is None:
        return SpeechdAddress(UNIX_SOCKET, default_socket_path())
    return SpeechdAddress.parse(text)
