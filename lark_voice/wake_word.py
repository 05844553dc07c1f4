"""Wake-word matching and the command-window state machine."""

from __future__ import annotations

import difflib
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol, Sequence

from .config import VoiceConfig
from .constants import (
    DEFAULT_PHONETIC_NEIGHBORS,
    EXACT_MATCH_SCORE,
    LOOSE_MATCH_WEIGHT,
    MIN_TRANSCRIPT_CHARS,
    PHONETIC_MATCH_SCORE,
    VARIANT_MATCH_SCORE,
    WAKE_GREETINGS,
)
from .events import COMMAND_DETECTED, WAKE_WORD_DETECTED, EventBus
from .matcher import LocalCommandMatcher
from .normalize import clean_token, normalize_command_text, tokenize
from .types import ActionKind, Command, Priority, TranscriptEvent, WakeWordState

LOGGER = logging.getLogger(__name__)

_HIGH_PRIORITY_ACTIONS = frozenset({ActionKind.MIRANDA, ActionKind.THREAT})
LEADING_WAKE_TOKENS = 3


@dataclass(frozen=True)
class WakeMatch:
    matcher: str
    score: float
    end: int


class WakeMatcher(Protocol):
    name: str

    def match(self, text: str) -> Optional[WakeMatch]:  # pragma: no cover - interface only
        ...


def _alternation(words: Iterable[str]) -> str:
    return "|".join(re.escape(word) for word in sorted(set(words), key=len, reverse=True))


class ExactPhraseMatcher:
    """Configured wake phrases as whole words anywhere in the transcript."""

    name = "exact"

    def __init__(self, phrases: Sequence[str], score: float = EXACT_MATCH_SCORE) -> None:
        self.score = score
        self._pattern = re.compile(rf"(?<!\w)(?:{_alternation(p.lower() for p in phrases)})(?!\w)")

    def match(self, text: str) -> Optional[WakeMatch]:
        found = self._pattern.search(text)
        if found is None:
            return None
        return WakeMatch(self.name, self.score, found.end())


class VariantMatcher:
    """Greeting plus wake word with punctuation or spacing mangled by the recognizer."""

    name = "variant"

    def __init__(
        self,
        wake_word: str,
        *,
        greetings: Sequence[str] = WAKE_GREETINGS,
        neighbors: Sequence[str] = (),
        score: float = VARIANT_MATCH_SCORE,
        name: str = "variant",
    ) -> None:
        self.name = name
        self.score = score
        words = _alternation([wake_word, *neighbors])
        self._pattern = re.compile(
            rf"(?<!\w)(?:{_alternation(greetings)})[\s,.!-]*(?:{words})(?!\w)"
        )

    def match(self, text: str) -> Optional[WakeMatch]:
        found = self._pattern.search(text)
        if found is None:
            return None
        return WakeMatch(self.name, self.score, found.end())


class LooseMatcher:
    """Last-resort similarity check on a short leading token.

    Only the first ``lead_tokens`` tokens are considered and each must be
    shorter than ``max_token_len``, so a long word that merely contains the
    wake word never arms the window.
    """

    name = "loose"

    def __init__(
        self,
        wake_word: str,
        *,
        max_token_len: int,
        min_similarity: float,
        weight: float = LOOSE_MATCH_WEIGHT,
        lead_tokens: int = 2,
    ) -> None:
        self.wake_word = wake_word.lower()
        self.max_token_len = max_token_len
        self.min_similarity = min_similarity
        self.weight = weight
        self.lead_tokens = lead_tokens

    def match(self, text: str) -> Optional[WakeMatch]:
        best: Optional[WakeMatch] = None
        position = 0
        for raw in text.split()[: self.lead_tokens]:
            position = text.find(raw, position) + len(raw)
            token = clean_token(raw)
            if not token or len(token) >= self.max_token_len:
                continue
            ratio = difflib.SequenceMatcher(None, token, self.wake_word).ratio()
            if ratio < self.min_similarity:
                continue
            candidate = WakeMatch(self.name, round(ratio * self.weight, 3), position)
            if best is None or candidate.score > best.score:
                best = candidate
        return best


def build_matchers(cfg: VoiceConfig) -> list[WakeMatcher]:
    """Ordered matcher list: the first tier that matches decides the score."""

    neighbors = DEFAULT_PHONETIC_NEIGHBORS.get(cfg.wake_word, ())
    matchers: list[WakeMatcher] = [
        ExactPhraseMatcher(cfg.wake_phrases),
        VariantMatcher(cfg.wake_word),
    ]
    if neighbors:
        matchers.append(
            VariantMatcher(
                cfg.wake_word, neighbors=neighbors, score=PHONETIC_MATCH_SCORE, name="phonetic"
            )
        )
    matchers.append(
        LooseMatcher(
            cfg.wake_word,
            max_token_len=cfg.loose_max_token_len,
            min_similarity=cfg.loose_min_similarity,
        )
    )
    return matchers


class WakeWordDetector:
    """Turn a transcript stream into :class:`Command` objects.

    ``IDLE -> ARMED`` on an interim (or final) transcript that matches a wake
    tier, ``ARMED -> COMMAND_WINDOW_OPEN`` on confirmation, then back to
    ``IDLE`` when a final arrives or the window times out. Finals seen while
    idle never become commands.
    """

    def __init__(
        self,
        cfg: VoiceConfig | None = None,
        *,
        matchers: Sequence[WakeMatcher] | None = None,
        events: EventBus | None = None,
        command_matcher: LocalCommandMatcher | None = None,
        restart_capture: Optional[Callable[[], None]] = None,
        auto_confirm: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cfg = cfg or VoiceConfig()
        self.matchers = list(matchers) if matchers is not None else build_matchers(self.cfg)
        self.events = events
        self.command_matcher = command_matcher or LocalCommandMatcher()
        self.restart_capture = restart_capture
        self.auto_confirm = auto_confirm
        self._clock = clock
        self.state = WakeWordState.IDLE
        self.armed_at: float | None = None
        self.last_match: Optional[WakeMatch] = None
        self._last_emitted: tuple[str, float] | None = None

    # Matching -----------------------------------------------------------
    def score(self, text: str) -> Optional[WakeMatch]:
        normalized = normalize_command_text(text)
        for matcher in self.matchers:
            found = matcher.match(normalized)
            if found is not None and found.score >= self.cfg.min_wake_confidence:
                return found
        return None

    def strip_wake_phrase(self, text: str) -> str:
        normalized = normalize_command_text(text)
        found = self.score(normalized)
        if found is None:
            return normalized
        # Only a leading wake phrase is stripped; one mid-sentence stays put.
        if len(tokenize(normalized[: found.end])) > LEADING_WAKE_TOKENS:
            return normalized
        return normalized[found.end :].strip(" ,.!?")

    # State machine ------------------------------------------------------
    def handle(self, event: TranscriptEvent) -> Optional[Command]:
        now = event.timestamp
        self.check_timeout(now)

        text = event.text.strip()
        if len(text) < MIN_TRANSCRIPT_CHARS or event.confidence < self.cfg.min_transcript_confidence:
            LOGGER.debug("Ignoring noisy transcript %r (confidence %.2f)", text, event.confidence)
            return None

        if self.state is WakeWordState.IDLE:
            found = self.score(text)
            if found is not None:
                self._arm(found, now)
            elif event.is_final:
                LOGGER.debug("Discarding final transcript while idle: %r", text)
            return None

        if self.state is WakeWordState.ARMED:
            if not event.is_final:
                return None
            self.confirm(now)

        if not event.is_final:
            return None

        command_text = self.strip_wake_phrase(text)
        wake = self.last_match
        self._close()
        if not command_text:
            return None
        return self._emit(command_text, event, now, wake=wake)

    def confirm(self, now: float | None = None) -> None:
        """Open the command window after a wake match.

        Asks the capture for a clean session when a restart hook is
        configured, so interim text heard before the wake word is dropped.
        """

        if self.state is not WakeWordState.ARMED:
            return
        if self.restart_capture is not None:
            self.restart_capture()
        self.state = WakeWordState.COMMAND_WINDOW_OPEN
        self.armed_at = self._clock() if now is None else now

    def check_timeout(self, now: float | None = None) -> bool:
        if self.state is WakeWordState.IDLE or self.armed_at is None:
            return False
        current = self._clock() if now is None else now
        if current - self.armed_at < self.cfg.command_window_s:
            return False
        LOGGER.info("Command window timed out after %.1fs", self.cfg.command_window_s)
        self._close()
        return True

    def time_until_timeout(self, now: float | None = None) -> Optional[float]:
        if self.state is WakeWordState.IDLE or self.armed_at is None:
            return None
        current = self._clock() if now is None else now
        return max(0.0, self.cfg.command_window_s - (current - self.armed_at))

    def submit(self, text: str, now: float | None = None) -> Optional[Command]:
        """Build a command from typed or push-to-talk text, bypassing the wake word."""

        current = self._clock() if now is None else now
        normalized = normalize_command_text(text)
        if not normalized:
            return None
        return self._emit(normalized, TranscriptEvent(text=text, is_final=True, timestamp=current), current)

    def reset(self) -> None:
        self._close()
        self._last_emitted = None

    # Internal helpers ---------------------------------------------------
    def _arm(self, found: WakeMatch, now: float) -> None:
        self.state = WakeWordState.ARMED
        self.armed_at = now
        self.last_match = found
        LOGGER.info("Wake word detected (%s, score %.2f)", found.matcher, found.score)
        if self.events is not None:
            self.events.emit(WAKE_WORD_DETECTED, matcher=found.matcher, score=found.score)
        if self.auto_confirm:
            self.confirm(now)

    def _close(self) -> None:
        self.state = WakeWordState.IDLE
        self.armed_at = None
        self.last_match = None

    def _emit(
        self,
        normalized: str,
        event: TranscriptEvent,
        now: float,
        *,
        wake: Optional[WakeMatch] = None,
    ) -> Optional[Command]:
        intent = self.command_matcher.match(normalized)
        action = intent.action if intent is not None else ActionKind.UNKNOWN

        if self._last_emitted is not None and action is not ActionKind.MIRANDA:
            last_text, last_at = self._last_emitted
            if last_text == normalized and now - last_at < self.cfg.dedup_window_s:
                LOGGER.info("Suppressing duplicate command %r", normalized)
                return None
        self._last_emitted = (normalized, now)

        priority = Priority.HIGH if action in _HIGH_PRIORITY_ACTIONS else Priority.MEDIUM
        command = Command(
            raw_text=event.text.strip(),
            normalized_text=normalized,
            alternatives=tuple(normalize_command_text(alt) for alt in event.alternatives),
            priority=priority,
        )
        if self.events is not None:
            self.events.emit(
                COMMAND_DETECTED,
                command=normalized,
                priority=priority.name,
                wake_matcher=wake.matcher if wake is not None else None,
                wake_score=wake.score if wake is not None else None,
            )
        return command


__all__ = [
    "ExactPhraseMatcher",
    "LooseMatcher",
    "VariantMatcher",
    "WakeMatch",
    "WakeMatcher",
    "WakeWordDetector",
    "build_matchers",
]
