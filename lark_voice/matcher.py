"""Offline pattern matcher: the no-network fast path for known command shapes."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Pattern

from .constants import LANGUAGE_ALIASES, MIRANDA_LANGUAGES
from .intent import (
    MirandaParams,
    ResolvedIntent,
    StatuteParams,
    TacticalParams,
    ThreatParams,
)
from .types import ActionKind

_LANGUAGE_PATTERN = re.compile(
    r"(" + "|".join(re.escape(alias) for alias in sorted(LANGUAGE_ALIASES, key=len, reverse=True)) + r")",
    re.IGNORECASE,
)


def detect_language(text: str, default: str = "english") -> str:
    """Return the Miranda language requested in ``text``; unsupported ones fall back to ``default``."""

    match = _LANGUAGE_PATTERN.search(text)
    if not match:
        return default
    language = LANGUAGE_ALIASES.get(match.group(1).lower(), default)
    return language if language in MIRANDA_LANGUAGES else default


def _miranda(text: str, match: re.Match[str]) -> ResolvedIntent:
    return ResolvedIntent(
        action=ActionKind.MIRANDA,
        params=MirandaParams(language=detect_language(text)),
        text=text,
    )


def _statute(text: str, match: re.Match[str]) -> ResolvedIntent:
    return ResolvedIntent(
        action=ActionKind.STATUTE,
        params=StatuteParams(statute=match.group(1)),
        text=text,
    )


def _threat(text: str, match: re.Match[str]) -> ResolvedIntent:
    return ResolvedIntent(action=ActionKind.THREAT, params=ThreatParams(description=text), text=text)


def _tactical(text: str, match: re.Match[str]) -> ResolvedIntent:
    return ResolvedIntent(action=ActionKind.TACTICAL, params=TacticalParams(query=text), text=text)


@dataclass(frozen=True)
class IntentPattern:
    name: str
    action: ActionKind
    patterns: tuple[Pattern[str], ...]
    build: Callable[[str, re.Match[str]], ResolvedIntent]


def _compile(*patterns: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# Order matters: the first pattern group that matches wins.
INTENT_PATTERNS: tuple[IntentPattern, ...] = (
    IntentPattern(
        "miranda",
        ActionKind.MIRANDA,
        _compile(r"read.*miranda.*rights", r"miranda.*rights", r"rights.*miranda", r"read.*rights", r"\bmiranda\b"),
        _miranda,
    ),
    IntentPattern(
        "statute",
        ActionKind.STATUTE,
        _compile(
            r"look.*up.*statute.*?(\d+:\d+)",
            r"what.*is.*statute.*?(\d+:\d+)",
            r"statute.*?(\d+:\d+)",
            r"\brs\s*(?:code\s*)?(\d+:\d+)",
        ),
        _statute,
    ),
    IntentPattern(
        "threat",
        ActionKind.THREAT,
        _compile(r"check.*threat", r"assess.*threat", r"scan.*area", r"threat.*assessment"),
        _threat,
    ),
    IntentPattern(
        "tactical",
        ActionKind.TACTICAL,
        _compile(r"tactical.*situation", r"situation.*report", r"tactical.*assessment"),
        _tactical,
    ),
)


class LocalCommandMatcher:
    """Resolve commands against an ordered list of intent patterns without I/O."""

    def __init__(self, patterns: tuple[IntentPattern, ...] = INTENT_PATTERNS) -> None:
        self.patterns = patterns

    def match(self, normalized_text: str) -> Optional[ResolvedIntent]:
        if not normalized_text:
            return None
        for group in self.patterns:
            for pattern in group.patterns:
                found = pattern.search(normalized_text)
                if found:
                    intent = group.build(normalized_text, found)
                    intent.notes.append(f"local_pattern:{group.name}")
                    return intent
        return None


_DEFAULT_MATCHER = LocalCommandMatcher()


def match_command(normalized_text: str) -> Optional[ResolvedIntent]:
    return _DEFAULT_MATCHER.match(normalized_text)


__all__ = ["IntentPattern", "INTENT_PATTERNS", "LocalCommandMatcher", "detect_language", "match_command"]
