"""Text normalization shared by the cache, matcher and wake-word detector."""

from __future__ import annotations

import re

_PUNCT_EDGE_CHARS = ".,!?\"'()[]{}<>"
_WORD_PATTERN = re.compile(r"[\w:']+", re.UNICODE)


def normalize_command_text(text: str) -> str:
    """Return the cache key form of a command.

    - Lowercases.
    - Trims leading and trailing whitespace.
    - Collapses internal runs of whitespace to one space.
    """

    return " ".join(text.lower().split())


def clean_token(token: str) -> str:
    return token.strip().strip(_PUNCT_EDGE_CHARS).lower()


def tokenize(text: str) -> list[str]:
    return _WORD_PATTERN.findall(text.lower())


__all__ = ["normalize_command_text", "clean_token", "tokenize"]
