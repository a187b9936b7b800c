"""Shared fixtures: a scripted speech server on the other end of a socket pair."""

from __future__ import annotations

import socket
import threading

import pytest

from speechd_mcp.session import Session
from speechd_mcp.transport.socket_connection import SocketConnection


class FakeSpeechServer:
    """Answers SSIP commands from a reply table.

    ``replies`` maps a command line to the reply text (lines joined by CRLF)
    or to a callable producing it; a callable returning None stops the
    server without replying. ``received`` records every line the
    client sent, including ``speak`` body lines.
    """

    def __init__(self) -> None:
        self.client_socket, self._socket = socket.socketpair()
        self._file = self._socket.makefile("rb")
        self._send_lock = threading.Lock()
        self._lock = threading.Lock()
        self._next_id = 1
        self.received: list[str] = []
        self.replies: dict[str, object] = {}
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _reply_for(self, line: str) -> str:
        reply = self.replies.get(line)
        if callable(reply):
            return reply(line)
        if reply is not None:
            return reply
        if line == "speak":
            return "230 OK RECEIVING DATA"
        if line == ".":
            with self._lock:
                message_id = self._next_id
                self._next_id += 1
            return f"225-{message_id}\r\n225 OK MESSAGE QUEUED"
        if line == "quit":
            return "231 HAPPY HACKING"
        return "200 OK"

    def _serve(self) -> None:
        in_body = False
        for raw in self._file:
            line = raw.decode("utf-8").rstrip("\r\n")
            with self._lock:
                self.received.append(line)
            if in_body and line != ".":
                continue

            reply = self._reply_for(line)
            if reply is None:
                # The scripted reply took over the connection
                return
            in_body = line == "speak" and reply.startswith("2")
            self.send(reply)
            if line == "quit":
                self.hang_up()
                return

    def lines(self) -> list[str]:
        with self._lock:
            return list(self.received)

    def send(self, text: str) -> None:
        with self._send_lock:
            try:
                self._socket.sendall((text + "\r\n").encode("utf-8"))
            except OSError:
                # The client may hang up without reading the reply
                pass

    def join(self, timeout: float) -> bool:
        """Wait for the server to stop. Returns True if it did."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def push_event(self, code: int, message_id: str, client_id: str = "1", name: str = "OK") -> None:
        self.send(f"{code}-{message_id}\r\n{code}-{client_id}\r\n{code} {name}")

    def hang_up(self) -> None:
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._socket.close()


@pytest.fixture
def server():
    fake = FakeSpeechServer()
    yield fake
    fake.hang_up()


@pytest.fixture
def session(server):
    sess = Session(SocketConnection.from_socket(server.client_socket))
    yield sess
    sess.close()
