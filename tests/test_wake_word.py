import pytest

from lark_voice.config import VoiceConfig
from lark_voice.events import COMMAND_DETECTED, WAKE_WORD_DETECTED
from lark_voice.types import Priority, TranscriptEvent, WakeWordState
from lark_voice.wake_word import LooseMatcher, WakeWordDetector


def interim(text, ts, confidence=None):
    alternatives = ((text, confidence),) if confidence is not None else ()
    return TranscriptEvent(text=text, is_final=False, timestamp=ts, confidence_alternatives=alternatives)


def final(text, ts):
    return TranscriptEvent(text=text, is_final=True, timestamp=ts)


def say(detector, command_text, ts):
    detector.handle(interim("hey lark", ts))
    return detector.handle(final(f"hey lark {command_text}", ts + 0.1))


@pytest.fixture
def detector(bus, clock):
    return WakeWordDetector(VoiceConfig(), events=bus, clock=clock)


@pytest.mark.parametrize(
    "text,matcher,score",
    [
        ("hey lark", "exact", 1.0),
        ("um, ok lark what's next", "exact", 1.0),
        ("hey, lark", "variant", 0.8),
        ("hello-lark", "variant", 0.8),
        ("hey clark", "phonetic", 0.6),
    ],
)
def test_tiered_scores(detector, text, matcher, score):
    found = detector.score(text)
    assert found is not None
    assert found.matcher == matcher
    assert found.score == pytest.approx(score)


def test_loose_tier_is_bounded_below_variants(detector):
    found = detector.score("larks read statute")
    assert found is not None
    assert found.matcher == "loose"
    assert 0.3 <= found.score <= 0.5


def test_loose_tier_ignores_long_and_trailing_tokens():
    matcher = LooseMatcher("lark", max_token_len=8, min_similarity=0.75)
    assert matcher.match("larkspurring the meadow") is None
    assert matcher.match("please look it up lark") is None


def test_unrelated_transcript_does_not_arm(detector):
    assert detector.score("the weather is nice today") is None
    assert detector.score("dispatch confirms unit seven") is None


def test_long_word_containing_wake_word_does_not_arm():
    cfg = VoiceConfig(wake_phrases=("hello assistant",), wake_word="assistant")
    detector = WakeWordDetector(cfg)
    detector.handle(interim("assistantship is important", 0.0))
    assert detector.state is WakeWordState.IDLE

    detector.handle(interim("hello assistant", 1.0))
    assert detector.state is WakeWordState.COMMAND_WINDOW_OPEN


def test_interim_match_opens_window_and_final_emits_command(detector, event_log):
    assert detector.handle(interim("hey lark", 0.0)) is None
    assert detector.state is WakeWordState.COMMAND_WINDOW_OPEN
    assert detector.armed_at == 0.0

    command = detector.handle(final("hey lark look up statute 14:30", 1.0))
    assert command is not None
    assert command.normalized_text == "look up statute 14:30"
    assert command.raw_text == "hey lark look up statute 14:30"
    assert command.priority is Priority.MEDIUM
    assert detector.state is WakeWordState.IDLE
    assert event_log.names() == [WAKE_WORD_DETECTED, COMMAND_DETECTED]
    detected = event_log.items[-1][1]
    assert detected["wake_matcher"] == "exact"
    assert detected["wake_score"] == 1.0
    assert detector.last_match is None


def test_confirm_restarts_capture_when_hooked():
    restarts = []
    detector = WakeWordDetector(VoiceConfig(), restart_capture=lambda: restarts.append(True))
    detector.handle(interim("hey lark", 0.0))
    assert restarts == [True]


def test_manual_confirmation():
    detector = WakeWordDetector(VoiceConfig(), auto_confirm=False)
    detector.handle(interim("hey lark", 0.0))
    assert detector.state is WakeWordState.ARMED
    detector.confirm(0.5)
    assert detector.state is WakeWordState.COMMAND_WINDOW_OPEN
    assert detector.time_until_timeout(2.5) == pytest.approx(8.0)


def test_final_while_idle_is_discarded(detector):
    assert detector.handle(final("look up statute 14:30", 0.0)) is None
    assert detector.state is WakeWordState.IDLE


def test_window_times_out_without_command(detector):
    detector.handle(interim("hey lark", 0.0))
    assert detector.check_timeout(9.9) is False
    assert detector.check_timeout(10.0) is True
    assert detector.state is WakeWordState.IDLE
    assert detector.handle(final("look up statute 14:30", 10.5)) is None


def test_noise_is_ignored(detector):
    detector.handle(interim("a", 0.0))
    detector.handle(interim("hey lark", 0.1, confidence=0.1))
    assert detector.state is WakeWordState.IDLE


def test_duplicate_within_window_is_suppressed(detector):
    assert say(detector, "check threat level", 0.0) is not None
    assert say(detector, "check threat level", 1.5) is None


def test_duplicate_after_window_executes_again(detector):
    assert say(detector, "check threat level", 0.0) is not None
    assert say(detector, "check threat level", 2.0) is not None


def test_miranda_is_never_deduplicated(detector):
    first = say(detector, "read miranda rights", 0.0)
    second = say(detector, "read miranda rights", 1.0)
    assert first is not None and second is not None
    assert first.priority is Priority.HIGH


def test_submit_bypasses_wake_word_but_not_dedup(detector, clock):
    command = detector.submit("  Check   THREAT ")
    assert command is not None
    assert command.normalized_text == "check threat"
    clock.advance(1.0)
    assert detector.submit("check threat") is None
    clock.advance(1.5)
    assert detector.submit("check threat") is not None


def test_mid_sentence_wake_phrase_is_kept(detector):
    assert detector.strip_wake_phrase("hey lark, read miranda rights") == "read miranda rights"
    text = "tell dispatch that we said hey lark earlier"
    assert detector.strip_wake_phrase(text) == text
