"""Speech Dispatcher session: command issuance and event correlation.

One background thread reads every message from the connection. Event
messages (7xx) are handed to the subscribed handlers; any other message is
the reply to the single command in flight and is passed to the waiting
caller through a one-slot queue. A session-wide lock makes sure only one
command, including the body of a ``speak`` command, is written at a time.

Usage::

    with Session.open() as session:
        session.set_event_notifications(True)
        message = session.speak("Hello world")
        message.wait()
"""

from __future__ import annotations

import getpass
import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from .protocol.commands import (
    END_OF_DATA,
    QUIT,
    SPEAK,
    EventCode,
    build_cancel,
    build_list_output_modules,
    build_list_synthesis_voices,
    build_pause,
    build_resume,
    build_set,
    build_set_client_name,
    build_set_language,
    build_set_notifications,
    build_set_output_module,
    build_set_pitch,
    build_set_priority,
    build_set_rate,
    build_set_spelling,
    build_set_synthesis_voice,
    build_set_volume,
    build_stop,
)
from .protocol.framing import (
    MalformedFrame,
    ServerMessage,
    SSIPError,
    TransportError,
    encode_line,
    encode_speak_line,
    read_message,
)
from .protocol.parser import (
    is_event,
    parse_list,
    parse_event,
    parse_message_id,
    require_success,
)
from .transport.address import SpeechdAddress, get_speechd_address
from .transport.socket_connection import SocketConnection, spawn_server

logger = logging.getLogger(__name__)

# Returns True to stay subscribed
EventHandler = Callable[[ServerMessage], bool]

READER_JOIN_TIMEOUT_S = 1.0

# Published on the reply queue when the receive loop dies
_READ_FAILED = object()


class PendingMessage:
    """A message queued for speaking.

    Resolved exactly once: ``True`` when it was spoken to the end,
    ``False`` when it was canceled.
    """

    def __init__(self, message_id: str) -> None:
        self.id = message_id
        self._lock = threading.Lock()
        self._resolved = threading.Event()
        self._result: bool | None = None

    def __repr__(self) -> str:
        return f"PendingMessage(id={self.id!r}, result={self._result!r})"

    @property
    def done(self) -> bool:
        return self._resolved.is_set()

    @property
    def result(self) -> bool | None:
        return self._result

    def resolve(self, completed: bool) -> bool:
        """Store the outcome. Returns False if it was already resolved."""
        with self._lock:
            if self._resolved.is_set():
                return False
            self._result = completed
            self._resolved.set()
            return True

    def on_event(self, message: ServerMessage) -> bool:
        """Event handler resolving this message on its terminal event."""
        event = parse_event(message)
        if event is None or event.message_id != self.id:
            return True
        if event.event is EventCode.END:
            completed = True
        elif event.event is EventCode.CANCEL:
            completed = False
        else:
            return True

        if not self.resolve(completed):
            logger.warning("Duplicate terminal event %d for message %s", event.code, self.id)
        return False

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the message was spoken or canceled.

        Event notifications must be enabled on the session, otherwise the
        server never reports the outcome and this blocks forever.

        Raises:
            TimeoutError: If ``timeout`` seconds pass first.
        """
        if not self._resolved.wait(timeout):
            raise TimeoutError(f"Message {self.id} not finished after {timeout}s")
        return self._result


class EventRegistry:
    """Ordered event handlers with stable slots.

    A retired handler leaves ``None`` in its slot, so indices never move
    while a dispatch is running.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[EventHandler | None] = []

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for h in self._handlers if h is not None)

    def add(self, handler: EventHandler) -> int:
        """Register ``handler`` and return its slot index."""
        with self._lock:
            self._handlers.append(handler)
            return len(self._handlers) - 1

    def retire(self, index: int) -> None:
        with self._lock:
            self._handlers[index] = None

    def dispatch(self, message: ServerMessage) -> None:
        """Offer ``message`` to every live handler, in registration order.

        Handlers run without the lock held, so they may register new
        handlers. A handler that raises is retired.
        """
        with self._lock:
            count = len(self._handlers)

        for index in range(count):
            with self._lock:
                handler = self._handlers[index]
            if handler is None:
                continue

            try:
                keep = handler(message)
            except Exception:
                logger.exception("Event handler %d failed, removing it", index)
                keep = False

            if not keep:
                self.retire(index)


class Session:
    """An open connection to Speech Dispatcher.

    The session owns the connection. Use :meth:`open` to connect with the
    default configuration.
    """

    def __init__(self, connection: SocketConnection) -> None:
        self._conn = connection
        self._lock = threading.Lock()
        self._replies: queue.Queue = queue.Queue(maxsize=1)
        self._error_lock = threading.Lock()
        self._error: SSIPError | None = None
        self._closed = False
        self.events = EventRegistry()
        self._reader = threading.Thread(
            target=self._receive_loop,
            name="speechd-receive",
            daemon=True,
        )
        self._reader.start()

    @classmethod
    def open(
        cls,
        address: SpeechdAddress | None = None,
        autospawn: bool = True,
    ) -> Session:
        """Connect to the server.

        Args:
            address: Server address; resolved from the environment if omitted.
            autospawn: Start the server first if it is not running.
        """
        if address is None:
            address = get_speechd_address()
        if autospawn:
            spawn_server()

        connection = SocketConnection(address)
        connection.open()
        return cls(connection)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ─── RECEIVE LOOP ────────────────────────────────────────────────

    @property
    def error(self) -> SSIPError | None:
        """The error that stopped the session, if any."""
        with self._error_lock:
            return self._error

    def _fail(self, error: SSIPError) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = error

    def _stop_receiving(self, error: SSIPError) -> None:
        self._fail(error)
        try:
            self._replies.put_nowait(_READ_FAILED)
        except queue.Full:
            pass

    def _receive_loop(self) -> None:
        while True:
            try:
                message = read_message(self._conn.read_line)
            except (TransportError, MalformedFrame) as e:
                if not self._closed:
                    logger.error("Receive loop stopped: %s", e)
                self._stop_receiving(e)
                return
            except Exception as e:
                logger.exception("Receive loop crashed")
                error = TransportError(f"Receive loop crashed: {e}")
                error.__cause__ = e
                self._stop_receiving(error)
                return

            if is_event(message.code):
                logger.debug("Event %r", message)
                self.events.dispatch(message)
                continue

            if self._closed:
                # Reply to quit; nobody waits for it
                continue

            self._replies.put(message)
            # Wait until the caller is done with the reply
            self._replies.join()

    # ─── COMMANDS ────────────────────────────────────────────────────

    def _check_usable(self) -> None:
        error = self.error
        if error is not None:
            raise error

    def _write(self, data: bytes) -> None:
        try:
            self._conn.write(data)
        except TransportError as e:
            self._fail(e)
            raise

    def _exchange(
        self,
        line: str,
        on_reply: Callable[[ServerMessage], Any] | None = None,
    ) -> Any:
        """Write ``line`` and wait for its reply. Lock must be held.

        ``on_reply`` runs before the receive loop reads the next message.
        """
        self._check_usable()
        self._write(encode_line(line))

        reply = self._replies.get()
        try:
            if reply is _READ_FAILED:
                raise self.error
            if on_reply is not None:
                return on_reply(reply)
            return reply
        finally:
            self._replies.task_done()

    def command(self, line: str) -> ServerMessage:
        """Send a raw command and return the server's reply.

        The reply code is not checked.

        Raises:
            TransportError: If the connection failed, now or earlier.
            MalformedFrame: If the server sent unparseable data.
        """
        with self._lock:
            return self._exchange(line)

    def _command_ok(self, line: str) -> ServerMessage:
        return require_success(self.command(line))

    def speak(self, text: str) -> PendingMessage:
        """Queue ``text`` for speaking.

        Returns:
            A handle that can be waited on, or ignored.

        Raises:
            ServerRejected: If the server refused the command or the text.
        """
        with self._lock:
            require_success(self._exchange(SPEAK))

            for line in text.replace("\r", "").split("\n"):
                self._write(encode_speak_line(line))

            def register(reply: ServerMessage) -> PendingMessage:
                require_success(reply)
                pending = PendingMessage(parse_message_id(reply))
                self.events.add(pending.on_event)
                return pending

            pending = self._exchange(END_OF_DATA, on_reply=register)

        logger.debug("Queued message %s", pending.id)
        return pending

    def subscribe(self, handler: EventHandler) -> int:
        """Call ``handler`` for every event until it returns False."""
        return self.events.add(handler)

    def set(self, name: str, value: str) -> None:
        """Set a session parameter.

        Prefer the dedicated setters where one exists.
        """
        self._command_ok(build_set(name, value))

    def set_client_name(self, user: str, program: str, component: str = "main") -> None:
        self._command_ok(build_set_client_name(user, program, component))

    def set_priority(self, priority: str) -> None:
        self._command_ok(build_set_priority(priority))

    def set_output_module(self, module: str) -> None:
        """Select the output module; see :meth:`list_output_modules`."""
        self._command_ok(build_set_output_module(module))

    def set_language(self, language: str) -> None:
        self._command_ok(build_set_language(language))

    def set_spelling(self, enabled: bool) -> None:
        self._command_ok(build_set_spelling(enabled))

    def set_rate(self, value: int) -> None:
        """Set the speech rate (-100 to 100)."""
        self._command_ok(build_set_rate(value))

    def set_pitch(self, value: int) -> None:
        """Set the speech pitch (-100 to 100)."""
        self._command_ok(build_set_pitch(value))

    def set_volume(self, value: int) -> None:
        """Set the speech volume (-100 to 100)."""
        self._command_ok(build_set_volume(value))

    def set_synthesis_voice(self, voice: str) -> None:
        """Select a voice of the current output module.

        This can override the language setting.
        """
        self._command_ok(build_set_synthesis_voice(voice))

    def set_event_notifications(self, enabled: bool) -> None:
        """Switch all event notifications on or off.

        Must be on before :meth:`PendingMessage.wait` can return.
        """
        self._command_ok(build_set_notifications(enabled))

    def list_output_modules(self) -> list[str]:
        return parse_list(self._command_ok(build_list_output_modules()))

    def list_synthesis_voices(self) -> list[str]:
        """List the voices of the current output module.

        Each entry is ``name<TAB>language<TAB>variant``.
        """
        return parse_list(self._command_ok(build_list_synthesis_voices()))

    def _fire_and_forget(self, line: str) -> None:
        try:
            self.command(line)
        except SSIPError as e:
            logger.warning("%r failed: %s", line, e)

    def stop(self) -> None:
        """Stop the message being spoken."""
        self._fire_and_forget(build_stop())

    def cancel(self) -> None:
        """Stop the message being spoken and drop all queued ones."""
        self._fire_and_forget(build_cancel())

    def pause(self) -> None:
        self._fire_and_forget(build_pause())

    def resume(self) -> None:
        self._fire_and_forget(build_resume())

    def close(self) -> None:
        """Say goodbye to the server and close the connection.

        The reply to ``quit`` is not awaited.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                if self.error is None:
                    self._conn.write(encode_line(QUIT))
            except SSIPError as e:
                logger.debug("quit failed: %s", e)
            finally:
                self._fail(TransportError("Session is closed"))
                self._conn.close()

        self._reader.join(READER_JOIN_TIMEOUT_S)


def open_session(
    address: SpeechdAddress | None = None,
    autospawn: bool = True,
    program: str = "speechd-mcp",
) -> Session:
    """Connect and identify this client with the current user name."""
    session = Session.open(address, autospawn=autospawn)
    try:
        session.set_client_name(getpass.getuser(), program)
    except SSIPError:
        session.close()
        raise
    return session
