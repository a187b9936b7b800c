"""Data models for server listings."""

from .voice import SynthVoice
