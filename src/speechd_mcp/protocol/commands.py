"""Event codes and SSIP command builders.

Every builder returns the command line without the CRLF terminator; the
framing layer adds it on write. Settings are always scoped to the current
connection (``self``).
"""

from __future__ import annotations

from enum import IntEnum

SPEAK = "speak"
END_OF_DATA = "."
QUIT = "quit"

MIN_PROSODY_VALUE = -100
MAX_PROSODY_VALUE = 100

PRIORITIES = ("important", "message", "text", "notification", "progress")


class EventCode(IntEnum):
    """Asynchronous event notification codes."""

    INDEX_MARK = 700
    BEGIN = 701
    END = 702
    CANCEL = 703
    PAUSE = 704
    RESUME = 705


def _on_off(value: bool) -> str:
    return "on" if value else "off"


def _check_prosody(name: str, value: int) -> None:
    if not MIN_PROSODY_VALUE <= value <= MAX_PROSODY_VALUE:
        raise ValueError(
            f"{name} must be {MIN_PROSODY_VALUE}-{MAX_PROSODY_VALUE}, got {value}"
        )


def build_set(name: str, value: str) -> str:
    """Build a ``set self`` command for an arbitrary parameter."""
    return f"set self {name} {value}"


def build_set_client_name(user: str, program: str, component: str) -> str:
    """Build the command identifying this client to the server."""
    return build_set("client_name", f"{user}:{program}:{component}")


def build_set_priority(priority: str) -> str:
    """Build a priority command for all following messages.

    Args:
        priority: One of :data:`PRIORITIES`.
    """
    if priority not in PRIORITIES:
        raise ValueError(f"Unknown priority '{priority}'. Valid: {list(PRIORITIES)}")
    return build_set("priority", priority)


def build_set_output_module(module: str) -> str:
    return build_set("output_module", module)


def build_set_language(language: str) -> str:
    """Build a language command from a two letter language code."""
    return build_set("language", language)


def build_set_spelling(enabled: bool) -> str:
    return build_set("spelling", _on_off(enabled))


def build_set_rate(value: int) -> str:
    """Build a speech rate command.

    Args:
        value: Rate from -100 to 100.
    """
    _check_prosody("Rate", value)
    return build_set("rate", str(value))


def build_set_pitch(value: int) -> str:
    """Build a speech pitch command.

    Args:
        value: Pitch from -100 to 100.
    """
    _check_prosody("Pitch", value)
    return build_set("pitch", str(value))


def build_set_volume(value: int) -> str:
    """Build a speech volume command.

    Args:
        value: Volume from -100 to 100.
    """
    _check_prosody("Volume", value)
    return build_set("volume", str(value))


def build_set_synthesis_voice(voice: str) -> str:
    return build_set("synthesis_voice", voice)


def build_set_notifications(enabled: bool) -> str:
    """Build the command switching all event notifications on or off."""
    return build_set("notification all", _on_off(enabled))


def build_list_output_modules() -> str:
    return "list output_modules"


def build_list_synthesis_voices() -> str:
    return "list synthesis_voices"


def build_stop() -> str:
    return "stop self"


def build_cancel() -> str:
    return "cancel self"


def build_pause() -> str:
    return "pause self"


def build_resume() -> str:
    return "resume self"
