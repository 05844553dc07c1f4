import asyncio

import pytest
from conftest import FakeClock, RecordingSleep

from lark_voice.errors import CaptureInterruptedError, PermissionDeniedError
from lark_voice.events import LISTENING_STARTED, LISTENING_STOPPED
from lark_voice.transcript import SourceState, TranscriptSource
from lark_voice.types import TranscriptEvent


class ScriptedCapture:
    """Each session replays one script; callables run, exceptions raise, events yield.

    Once the scripts run out the session blocks until cancelled.
    """

    def __init__(self, sessions):
        self.sessions = list(sessions)
        self.opened = 0

    async def open_session(self):
        self.opened += 1
        if not self.sessions:
            await asyncio.Event().wait()
            return
        for item in self.sessions.pop(0):
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                item()
                continue
            yield item


def event(text):
    return TranscriptEvent(text=text, is_final=False, timestamp=0.0)


def test_restart_delay_is_capped():
    source = TranscriptSource(ScriptedCapture([]))
    assert [source.restart_delay_s(n) for n in range(6)] == [0.3, 0.6, 1.2, 2.4, 3.0, 3.0]


@pytest.mark.asyncio
async def test_restarts_after_session_end_and_transient_errors(bus, event_log):
    sleep = RecordingSleep()
    capture = ScriptedCapture([[event("one")], [CaptureInterruptedError("no speech")], [event("two")]])
    source = TranscriptSource(capture, sleep=sleep, clock=FakeClock(), events=bus)

    source.start()
    first = await source.next_event(timeout=1.0)
    second = await source.next_event(timeout=1.0)

    assert (first.text, second.text) == ("one", "two")
    assert sleep.delays[:2] == [0.3, 0.6]

    await source.stop()
    assert source.state is SourceState.STOPPED
    assert not source.running
    assert event_log.names()[0] == LISTENING_STARTED
    assert event_log.names()[-1] == LISTENING_STOPPED


@pytest.mark.asyncio
async def test_stable_session_resets_backoff():
    sleep = RecordingSleep()
    clock = FakeClock()
    capture = ScriptedCapture(
        [
            [CaptureInterruptedError("blip")],
            [CaptureInterruptedError("blip")],
            [lambda: clock.advance(40.0), CaptureInterruptedError("blip")],
            [event("ready")],
        ]
    )
    source = TranscriptSource(capture, sleep=sleep, clock=clock)

    source.start()
    ready = await source.next_event(timeout=1.0)
    await source.stop()

    assert ready.text == "ready"
    assert sleep.delays[:3] == [0.3, 0.6, 0.3]


@pytest.mark.asyncio
async def test_permission_denial_is_terminal():
    sleep = RecordingSleep()
    capture = ScriptedCapture([[PermissionDeniedError("microphone denied")], [event("never")]])
    source = TranscriptSource(capture, sleep=sleep, clock=FakeClock())

    source.start()
    with pytest.raises(PermissionDeniedError):
        await source.next_event(timeout=1.0)

    assert source.state is SourceState.DENIED
    assert capture.opened == 1
    assert sleep.delays == []
    with pytest.raises(PermissionDeniedError):
        source.start()


@pytest.mark.asyncio
async def test_builtin_permission_error_is_also_terminal():
    capture = ScriptedCapture([[PermissionError("not allowed")]])
    source = TranscriptSource(capture, sleep=RecordingSleep(), clock=FakeClock())

    source.start()
    with pytest.raises(PermissionDeniedError):
        await source.next_event(timeout=1.0)


@pytest.mark.asyncio
async def test_stop_suppresses_restart_and_ends_iteration():
    sleep = RecordingSleep()
    capture = ScriptedCapture([[event("only")]])
    source = TranscriptSource(capture, sleep=sleep, clock=FakeClock())

    source.start()
    received = []
    async for item in source.events_iter():
        received.append(item.text)
        await source.stop()

    assert received == ["only"]
    assert not source.running


@pytest.mark.asyncio
async def test_next_event_times_out_with_none():
    source = TranscriptSource(ScriptedCapture([]), sleep=RecordingSleep(), clock=FakeClock())
    source.start()
    assert await source.next_event(timeout=0.01) is None
    await source.stop()
