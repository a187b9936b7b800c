"""Tests for the MCP tool layer."""

from __future__ import annotations

import sys
import time
from functools import partial
from unittest.mock import MagicMock, patch

import anyio
import pytest

from speechd_mcp.models.voice import SynthVoice
from speechd_mcp.protocol.framing import ServerMessage, TransportError
from speechd_mcp.protocol.parser import ServerRejected
from speechd_mcp.session import PendingMessage


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
        # Remove cached server module so it re-imports with our mock
        sys.modules.pop("speechd_mcp.server", None)
        import speechd_mcp.server as server_mod

    return server_mod


def test_speak_without_wait_returns_id():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.speak.return_value = PendingMessage("42")

    with patch.object(server, "_get_session", return_value=mock_session):
        result = anyio.run(server.speak, "hello")

    assert result == {"message_id": "42"}
    mock_session.speak.assert_called_once_with("hello")


def test_speak_wait_reports_outcome():
    server = _get_server_module()
    message = PendingMessage("42")
    message.resolve(False)
    mock_session = MagicMock()
    mock_session.speak.return_value = message

    with patch.object(server, "_get_session", return_value=mock_session):
        result = anyio.run(partial(server.speak, "hello", wait=True))

    assert result == {"message_id": "42", "completed": False}


def test_speak_wait_timeout():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.speak.return_value = PendingMessage("42")

    with patch.object(server, "_get_session", return_value=mock_session):
        result = anyio.run(partial(server.speak, "hello", wait=True, timeout=0.01))

    assert result["timed_out"] is True
    assert result["completed"] is None


def test_cancel_runs_while_speak_waits():
    """A waiting speak does not block other tools on the event loop."""
    server = _get_server_module()
    message = PendingMessage("42")
    mock_session = MagicMock()
    mock_session.speak.return_value = message
    mock_session.cancel.side_effect = lambda: message.resolve(False)
    results = {}

    async def scenario():
        async def speak_and_wait():
            results["speak"] = await server.speak("hello", wait=True, timeout=5.0)

        async with anyio.create_task_group() as tg:
            tg.start_soon(speak_and_wait)
            await anyio.sleep(0.05)
            results["cancel"] = server.cancel()

    with patch.object(server, "_get_session", return_value=mock_session):
        started = time.monotonic()
        anyio.run(scenario)
        elapsed = time.monotonic() - started

    assert results["cancel"] == {"canceled": True}
    assert results["speak"] == {"message_id": "42", "completed": False}
    assert elapsed < 2.0


def test_rate_out_of_range_never_reaches_session():
    """Range errors are reported at the tool boundary."""
    server = _get_server_module()
    mock_session = MagicMock()

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.set_rate(150)

    assert "error" in result
    mock_session.set_rate.assert_not_called()


def test_set_volume_in_range():
    server = _get_server_module()
    mock_session = MagicMock()

    with patch.object(server, "_get_session", return_value=mock_session):
        assert server.set_volume(-100) == {"volume": -100}

    mock_session.set_volume.assert_called_once_with(-100)


def test_unknown_priority():
    server = _get_server_module()
    mock_session = MagicMock()

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.set_priority("urgent")

    assert "error" in result
    mock_session.set_priority.assert_not_called()


def test_list_synthesis_voices_structured():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.list_synthesis_voices.return_value = ["Alan\ten\tnone", "Klara\tcs\tf1"]

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.list_synthesis_voices()

    assert result["voices"] == [
        {"name": "Alan", "language": "en", "variant": ""},
        {"name": "Klara", "language": "cs", "variant": "f1"},
    ]


def test_send_command_returns_reply():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.command.return_value = ServerMessage(code=251, lines=["10", "OK GET RETURNED"])

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.send_command("get rate")

    assert result == {"code": 251, "lines": ["10", "OK GET RETURNED"]}


def test_send_command_rejects_multiple_lines():
    server = _get_server_module()
    mock_session = MagicMock()

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.send_command("get rate\r\nquit")

    assert "error" in result
    mock_session.command.assert_not_called()


def test_send_command_reports_transport_error():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.command.side_effect = TransportError("Connection closed by server")

    with patch.object(server, "_get_session", return_value=mock_session):
        result = server.send_command("get rate")

    assert result == {"error": "Connection closed by server"}


def test_connect_enables_notifications():
    server = _get_server_module()
    mock_session = MagicMock()
    mock_session.error = None
    mock_session.list_output_modules.return_value = ["espeak"]

    with patch.object(server, "open_session", return_value=mock_session) as opener:
        result = server.connect("inet_socket:localhost:6560", autospawn=False)

    assert result == {"connected": True, "output_modules": ["espeak"]}
    opener.assert_called_once()
    assert opener.call_args.kwargs == {"autospawn": False}
    mock_session.set_event_notifications.assert_called_once_with(True)
    server._session = None


def test_connect_replaces_failed_session():
    server = _get_server_module()
    stale = MagicMock()
    stale.error = TransportError("Connection closed by server")
    fresh = MagicMock()
    fresh.error = None
    fresh.list_output_modules.return_value = ["espeak"]
    server._session = stale

    with patch.object(server, "open_session", return_value=fresh):
        result = server.connect(autospawn=False)

    assert result["connected"] is True
    stale.close.assert_called_once_with()
    assert server._session is fresh
    server._session = None


def test_connect_setup_failure_closes_session():
    server = _get_server_module()
    server._session = None
    fresh = MagicMock()
    fresh.set_event_notifications.side_effect = ServerRejected(500, ["ERROR"])

    with patch.object(server, "open_session", return_value=fresh):
        with pytest.raises(ServerRejected):
            server.connect(autospawn=False)

    fresh.close.assert_called_once_with()
    assert server._session is None


def test_connect_invalid_address():
    server = _get_server_module()
    with patch.object(server, "open_session") as opener:
        result = server.connect("pipe:/tmp/x")
    assert "error" in result
    opener.assert_not_called()


def test_tools_require_connection():
    server = _get_server_module()
    server._session = None
    with pytest.raises(RuntimeError, match="connect"):
        server.stop()


def test_synth_voice_missing_fields():
    voice = SynthVoice.from_line("Alan")
    assert voice.to_dict() == {"name": "Alan", "language": "", "variant": ""}
