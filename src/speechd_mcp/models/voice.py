"""Synthesis voice model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class SynthVoice:
    """One entry of a ``list synthesis_voices`` reply."""

    name: str
    language: str = ""
    variant: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "language": self.language,
            "variant": self.variant,
        }

    @classmethod
    def from_line(cls, line: str) -> SynthVoice:
        """Parse a ``name<TAB>language<TAB>variant`` line.

        Missing fields are left empty; ``none`` marks an absent variant.
        """
        fields = line.split("\t")
        name = fields[0]
        language = fields[1] if len(fields) > 1 else ""
        variant = fields[2] if len(fields) > 2 else ""
        if variant == "none":
            variant = ""
        return cls(name=name, language=language, variant=variant)
