"""MCP server entry point for Speech Dispatcher.

Exposes speech output and voice settings as tools via the Model Context
Protocol using the official Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import logging
from typing import Any

import anyio
from mcp.server.fastmcp import FastMCP

from .models.voice import SynthVoice
from .protocol.commands import MAX_PROSODY_VALUE, MIN_PROSODY_VALUE, PRIORITIES
from .protocol.framing import SSIPError
from .session import Session, open_session
from .transport.address import SpeechdAddress

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "speechd",
    instructions="MCP server for the Speech Dispatcher text-to-speech service",
)

# Global connection state
_session: Session | None = None


def _get_session() -> Session:
    """Get the active session, raising if not connected."""
    if _session is None or _session.error is not None:
        raise RuntimeError(
            "Not connected to speech-dispatcher. Use the 'connect' tool first."
        )
    return _session


def _prosody_error(name: str, value: int) -> dict[str, str] | None:
    if not MIN_PROSODY_VALUE <= value <= MAX_PROSODY_VALUE:
        return {"error": f"{name} must be {MIN_PROSODY_VALUE}-{MAX_PROSODY_VALUE}"}
    return None


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(address: str | None = None, autospawn: bool = True) -> dict[str, Any]:
    """Open a session with speech-dispatcher.

    Identifies this client and enables event notifications so that
    ``speak`` can wait for a message to finish.

    Args:
        address: ``unix_socket:<path>`` or ``inet_socket:<host>:<port>``.
                 Defaults to $SPEECHD_ADDRESS or the per-user socket.
        autospawn: Start speech-dispatcher if it is not running.
    """
    global _session
    if _session is not None:
        if _session.error is None:
            return {"connected": True, "message": "Already connected"}
        # Release the socket and receive thread of the failed session
        _session.close()
        _session = None

    try:
        parsed = SpeechdAddress.parse(address) if address else None
    except ValueError as e:
        return {"error": str(e)}

    session = open_session(parsed, autospawn=autospawn)
    try:
        session.set_event_notifications(True)
        modules = session.list_output_modules()
    except SSIPError:
        session.close()
        raise

    _session = session
    return {"connected": True, "output_modules": modules}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the session with speech-dispatcher."""
    global _session
    if _session is None:
        return {"disconnected": True}
    _session.close()
    _session = None
    return {"disconnected": True}


# ─── SPEECH TOOLS ────────────────────────────────────────────────────

@mcp.tool()
async def speak(text: str, wait: bool = False, timeout: float = 30.0) -> dict[str, Any]:
    """Queue text for speaking.

    Args:
        text: Text to speak; may span several lines.
        wait: Block until the message was spoken or canceled.
        timeout: Maximum seconds to wait when ``wait`` is set.
    """
    session = _get_session()
    message = session.speak(text)
    result: dict[str, Any] = {"message_id": message.id}
    if wait:
        # Wait in a worker thread so stop and cancel can run meanwhile
        try:
            result["completed"] = await anyio.to_thread.run_sync(message.wait, timeout)
        except TimeoutError:
            result["completed"] = None
            result["timed_out"] = True
    return result


@mcp.tool()
def stop() -> dict[str, bool]:
    """Stop the message currently being spoken."""
    _get_session().stop()
    return {"stopped": True}


@mcp.tool()
def cancel() -> dict[str, bool]:
    """Stop the current message and discard all queued messages."""
    _get_session().cancel()
    return {"canceled": True}


@mcp.tool()
def pause() -> dict[str, bool]:
    """Pause speech output."""
    _get_session().pause()
    return {"paused": True}


@mcp.tool()
def resume() -> dict[str, bool]:
    """Resume paused speech output."""
    _get_session().resume()
    return {"resumed": True}


# ─── VOICE SETTING TOOLS ─────────────────────────────────────────────

@mcp.tool()
def set_rate(value: int) -> dict[str, Any]:
    """Set the speech rate.

    Args:
        value: Rate from -100 (slowest) to 100 (fastest).
    """
    error = _prosody_error("Rate", value)
    if error:
        return error
    _get_session().set_rate(value)
    return {"rate": value}


@mcp.tool()
def set_pitch(value: int) -> dict[str, Any]:
    """Set the speech pitch.

    Args:
        value: Pitch from -100 to 100.
    """
    error = _prosody_error("Pitch", value)
    if error:
        return error
    _get_session().set_pitch(value)
    return {"pitch": value}


@mcp.tool()
def set_volume(value: int) -> dict[str, Any]:
    """Set the speech volume.

    Args:
        value: Volume from -100 to 100.
    """
    error = _prosody_error("Volume", value)
    if error:
        return error
    _get_session().set_volume(value)
    return {"volume": value}


@mcp.tool()
def set_language(language: str) -> dict[str, str]:
    """Set the language by two letter code (e.g. 'en', 'cs').

    This can change the selected voice.
    """
    _get_session().set_language(language)
    return {"language": language}


@mcp.tool()
def set_priority(priority: str) -> dict[str, str]:
    """Set the priority of the following messages.

    Args:
        priority: important, message, text, notification or progress.
    """
    if priority not in PRIORITIES:
        return {"error": f"Unknown priority '{priority}'. Valid: {list(PRIORITIES)}"}
    _get_session().set_priority(priority)
    return {"priority": priority}


@mcp.tool()
def set_spelling(enabled: bool) -> dict[str, bool]:
    """Switch spelling mode on or off."""
    _get_session().set_spelling(enabled)
    return {"spelling": enabled}


@mcp.tool()
def set_output_module(module: str) -> dict[str, str]:
    """Select the speech synthesizer. Use list_output_modules for names."""
    _get_session().set_output_module(module)
    return {"output_module": module}


@mcp.tool()
def set_synthesis_voice(voice: str) -> dict[str, str]:
    """Select a voice of the current output module.

    Use list_synthesis_voices for names. This can override the language.
    """
    _get_session().set_synthesis_voice(voice)
    return {"synthesis_voice": voice}


# ─── LISTING TOOLS ───────────────────────────────────────────────────

@mcp.tool()
def list_output_modules() -> dict[str, list[str]]:
    """List the available speech synthesizers."""
    return {"output_modules": _get_session().list_output_modules()}


@mcp.tool()
def list_synthesis_voices() -> dict[str, list[dict]]:
    """List the voices of the current output module."""
    lines = _get_session().list_synthesis_voices()
    return {"voices": [SynthVoice.from_line(line).to_dict() for line in lines]}


@mcp.tool()
def send_command(command: str) -> dict[str, Any]:
    """Send a raw SSIP command and return the server's reply.

    Args:
        command: A single command line, e.g. 'get rate'.
    """
    if "\n" in command or "\r" in command:
        return {"error": "Command must be a single line"}
    try:
        reply = _get_session().command(command)
    except SSIPError as e:
        return {"error": str(e)}
    return {"code": reply.code, "lines": reply.lines}


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    try:
        mcp.run(transport="stdio")
    finally:
        if _session is not None:
            _session.close()


if __name__ == "__main__":
    main()
