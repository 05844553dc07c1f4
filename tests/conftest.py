import asyncio
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from lark_voice.cache import CommandCache, PersistentStore  # noqa: E402
from lark_voice.config import VoiceConfig  # noqa: E402
from lark_voice.events import EventBus  # noqa: E402

GENERAL_REPLY = '{"action": "general_knowledge", "parameters": {"query": "q"}, "resultText": "answer"}'


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Interpreter provider returning canned replies per model."""

    def __init__(self, replies=None, errors=None, delay: float = 0.0) -> None:
        self.replies = dict(replies or {})
        self.errors = dict(errors or {})
        self.delay = delay
        self.calls: list[str] = []
        self.prompts: list[str] = []

    async def complete(self, system_prompt: str, user_text: str, *, model: str) -> str:
        self.calls.append(model)
        self.prompts.append(user_text)
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.errors.get(model) or self.errors.get("*")
        if error is not None:
            raise error
        return self.replies.get(model, GENERAL_REPLY)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class EventLog:
    def __init__(self, bus: EventBus) -> None:
        self.items: list[tuple[str, dict]] = []
        bus.subscribe("*", lambda name, payload: self.items.append((name, payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.items]


@pytest.fixture
def cfg(tmp_path):
    return VoiceConfig(
        cache_path=str(tmp_path / "cache.sqlite3"),
        event_log_path=str(tmp_path / "events.jsonl"),
    )


@pytest.fixture
def clock():
    return FakeClock(1_000.0)


@pytest.fixture
def store(cfg):
    persistent = PersistentStore(cfg.cache_path)
    yield persistent
    persistent.close()


@pytest.fixture
def cache(store, clock):
    return CommandCache(store, clock=clock)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def event_log(bus):
    return EventLog(bus)
