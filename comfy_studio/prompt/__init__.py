"""Structured prompt codec."""

from __future__ import annotations

from .structured import (
    Character,
    GeneralTags,
    ParsedPrompt,
    build_final_prompt,
    create_empty_character,
    decode,
    encode,
)

__all__ = [
    "Character",
    "GeneralTags",
    "ParsedPrompt",
    "build_final_prompt",
    "create_empty_character",
    "decode",
    "encode",
]
