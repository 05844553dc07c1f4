"""Split one utterance into ordered sub-commands."""

from __future__ import annotations

import re
import uuid

from .constants import CHAIN_BOUNDARIES, CHAIN_BOUNDARY_OPENERS, CHAIN_SEPARATORS


def _separator_pattern(separator: str) -> re.Pattern[str]:
    if separator == ";":
        return re.compile(r"\s*;\s*")
    return re.compile(rf"\s+{re.escape(separator)}\s+", re.IGNORECASE)


_SEPARATOR_PATTERNS = tuple((sep, _separator_pattern(sep)) for sep in CHAIN_SEPARATORS)
_BOUNDARY_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(b) for b in CHAIN_BOUNDARIES) + r")\b[,]?", re.IGNORECASE
)
_OPENER_PATTERN = re.compile(
    r"^\s*(" + "|".join(re.escape(b) for b in CHAIN_BOUNDARY_OPENERS) + r")\b", re.IGNORECASE
)


_EDGE_SEPARATOR_PATTERN = re.compile(
    r"^(?:and then|then|and|next)\s+|\s+(?:and then|then|and|next)$", re.IGNORECASE
)


def _split_on_boundaries(utterance: str) -> list[str]:
    parts = _BOUNDARY_PATTERN.split(utterance)
    # re.split keeps captured boundary words at odd indices
    commands = [
        _EDGE_SEPARATOR_PATTERN.sub("", part.strip(" ,;")).strip()
        for idx, part in enumerate(parts)
        if idx % 2 == 0
    ]
    return [cmd for cmd in commands if cmd]


def split_command_chain(utterance: str) -> list[str]:
    """Return the ordered sub-commands of ``utterance``.

    Utterances opening with an ordinal ("first ..., then finally ...") split on
    the ordinal boundaries. Otherwise the first separator type present wins
    and only that separator is split on. Without any separator the whole
    utterance comes back as a single element.
    """

    text = utterance.strip()
    if not text:
        return []

    if _OPENER_PATTERN.match(text):
        commands = _split_on_boundaries(text)
        if len(commands) > 1:
            return commands

    for _, pattern in _SEPARATOR_PATTERNS:
        if pattern.search(text):
            commands = [part.strip() for part in pattern.split(text)]
            commands = [cmd for cmd in commands if cmd]
            if len(commands) > 1:
                return commands
    return [text]


def new_chain_id() -> str:
    return str(uuid.uuid4())


__all__ = ["split_command_chain", "new_chain_id"]
