import asyncio

import pytest
from conftest import FakeProvider, RecordingSleep

from lark_voice.constants import (
    NO_OFFLINE_MATCH_RESPONSE,
    OFFLINE_UNAVAILABLE_RESPONSE,
    STEP_DOWN_HINT,
)
from lark_voice.errors import ApiError, PermissionDeniedError
from lark_voice.events import COMMAND_FAILED
from lark_voice.executor import CommandExecutor
from lark_voice.fallback import DegradationManager
from lark_voice.handlers import ThreatHandler
from lark_voice.interpreter import RemoteInterpreter
from lark_voice.normalize import normalize_command_text
from lark_voice.pipeline import VoicePipeline
from lark_voice.telemetry import TelemetryRecorder
from lark_voice.transcript import TranscriptSource
from lark_voice.types import ActionKind, Command, DegradationLevel, Priority, TranscriptEvent


class RecordingThreatHandler(ThreatHandler):
    def __init__(self):
        super().__init__()
        self.previous = []

    async def handle(self, params, context):
        self.previous.append(context.previous_result)
        return await super().handle(params, context)


class FakeSpeech:
    def __init__(self, fail=False):
        self.fail = fail
        self.spoken = []

    async def speak(self, text, voice_id, target_language=None):
        if self.fail:
            raise RuntimeError("audio device busy")
        self.spoken.append((text, voice_id, target_language))

    async def stop(self):
        pass


@pytest.fixture
def make_pipeline(cfg, cache, bus):
    def _make(provider=None, **kwargs):
        health = DegradationManager(events=bus)
        interpreter = RemoteInterpreter(provider, health, cfg=cfg) if provider is not None else None
        kwargs.setdefault("sleep", RecordingSleep())
        return VoicePipeline(
            cfg,
            cache=cache,
            interpreter=interpreter,
            health=health,
            telemetry=TelemetryRecorder(events=bus),
            events=bus,
            **kwargs,
        )

    return _make


def command(text):
    return Command(raw_text=text, normalized_text=normalize_command_text(text))


@pytest.mark.asyncio
async def test_chain_runs_in_order_with_previous_result(make_pipeline):
    threat = RecordingThreatHandler()
    pipeline = make_pipeline(executor=CommandExecutor({ActionKind.THREAT: threat}))

    results = await pipeline.submit_text("look up statute 14:30 and then assess threat for that situation")

    assert [r.action for r in results] == [ActionKind.STATUTE, ActionKind.THREAT]
    assert results[0].response.startswith("RS 14:30")
    assert threat.previous == [results[0]]
    assert pipeline.telemetry.stats().total == 2


@pytest.mark.asyncio
async def test_chain_stops_at_first_failure(make_pipeline, event_log):
    provider = FakeProvider(errors={"*": ApiError("bad request", recoverable=False)})
    pipeline = make_pipeline(provider)

    results = await pipeline.process_command(command("what is the capital of france and then read miranda rights"))

    assert len(results) == 1
    assert not results[0].success
    assert results[0].metadata["errorType"] == "api_error"
    assert results[0].metadata["queued"] is False
    assert COMMAND_FAILED in event_log.names()


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache(make_pipeline):
    pipeline = make_pipeline()

    first = await pipeline.process_command(command("read miranda rights in spanish"))
    second = await pipeline.process_command(command("Read  Miranda rights in SPANISH"))

    assert first[0].module == "local"
    assert first[0].metadata["cache_hit"] is False
    assert second[0].module == "cache"
    assert second[0].metadata["cache_hit"] is True
    assert second[0].response == first[0].response
    assert pipeline.stats().cache_hits == 1


@pytest.mark.asyncio
async def test_threat_assessments_are_never_served_from_cache(make_pipeline):
    pipeline = make_pipeline()
    await pipeline.process_command(command("check threat"))
    again = await pipeline.process_command(command("check threat"))
    assert again[0].module == "local"
    assert again[0].metadata["cache_hit"] is False


@pytest.mark.asyncio
async def test_remote_interpretation_is_executed_and_cached(make_pipeline, cfg):
    provider = FakeProvider()
    pipeline = make_pipeline(provider)

    results = await pipeline.process_command(command("what is the capital of france"))
    cached = await pipeline.process_command(command("what is the capital of france"))

    assert results[0].action is ActionKind.GENERAL_KNOWLEDGE
    assert results[0].response == "answer"
    assert results[0].metadata["model"] == cfg.model_name
    assert results[0].metadata["fallback_level"] == "primary"
    assert cached[0].module == "cache"
    assert provider.calls == [cfg.model_name]


@pytest.mark.asyncio
async def test_without_interpreter_unmatched_commands_fail_readably(make_pipeline):
    pipeline = make_pipeline()
    results = await pipeline.process_command(command("what is the capital of france"))
    assert results[0].response == NO_OFFLINE_MATCH_RESPONSE
    assert not results[0].success
    assert len(pipeline.queue) == 0


@pytest.mark.asyncio
async def test_offline_commands_queue_and_replay_in_order(make_pipeline, cfg):
    provider = FakeProvider()
    pipeline = make_pipeline(provider)
    pipeline.set_network_online(False)

    queued = await pipeline.process_command(command("what is the capital of france"))
    assert queued[0].response == OFFLINE_UNAVAILABLE_RESPONSE
    assert queued[0].metadata["queued"] is True
    assert queued[0].metadata["errorType"] == "network_error"
    assert provider.calls == []

    miranda = await pipeline.process_command(command("read miranda rights in spanish"))
    assert miranda[0].success
    assert miranda[0].module == "local"
    assert len(pipeline.queue) == 1

    await pipeline.process_command(command("who wrote hamlet"))
    assert len(pipeline.queue) == 2

    pipeline.set_network_online(True)
    drain = pipeline.queue.schedule_drain()
    assert drain is not None
    await drain

    assert [r.command for r in pipeline.queued_results] == [
        "what is the capital of france",
        "who wrote hamlet",
    ]
    assert pipeline.queued_results[0].response == "answer"
    assert not pipeline.queue.has_backlog


@pytest.mark.asyncio
async def test_after_recovery_only_higher_priority_commands_overtake_backlog(make_pipeline):
    pipeline = make_pipeline(FakeProvider())
    pipeline.set_network_online(False)
    await pipeline.process_command(command("what is the capital of france"))

    pipeline.set_network_online(True)
    drain = pipeline.queue.schedule_drain()

    behind = await pipeline.process_command(command("what is the tallest mountain"))
    urgent = await pipeline.process_command(
        Command(raw_text="read miranda rights", normalized_text="read miranda rights", priority=Priority.HIGH)
    )

    assert behind[0].module == "queue"
    assert urgent[0].success
    assert urgent[0].action is ActionKind.MIRANDA
    await drain
    assert [r.command for r in pipeline.queued_results] == [
        "what is the capital of france",
        "what is the tallest mountain",
    ]


@pytest.mark.asyncio
async def test_queued_chain_remainder_keeps_its_steps(make_pipeline):
    pipeline = make_pipeline(FakeProvider())
    pipeline.set_network_online(False)

    await pipeline.process_command(command("what is the capital of france and then tell me the next step"))
    assert pipeline.queue.pending()[0].chain_steps == ("what is the capital of france", "tell me the next step")

    pipeline.set_network_online(True)
    await pipeline.queue.schedule_drain()

    assert [r.command for r in pipeline.queued_results] == ["tell me the next step"]
    assert pipeline.queued_results[0].success


@pytest.mark.asyncio
async def test_remote_answer_is_used_instead_of_offline_reference(make_pipeline, cfg):
    reply = '{"action": "statute", "parameters": {"statute": "14:67"}, "resultText": "RS 14:67 is theft."}'
    pipeline = make_pipeline(FakeProvider(replies={cfg.model_name: reply}))

    first = await pipeline.process_command(command("which law covers shoplifting"))
    again = await pipeline.process_command(command("which law covers shoplifting"))

    assert first[0].success
    assert first[0].action is ActionKind.STATUTE
    assert first[0].response == "RS 14:67 is theft."
    assert again[0].module == "cache"
    assert again[0].response == "RS 14:67 is theft."


@pytest.mark.asyncio
async def test_offline_reference_miss_is_not_cached(make_pipeline):
    pipeline = make_pipeline()

    first = await pipeline.process_command(command("look up statute 99:99"))
    again = await pipeline.process_command(command("look up statute 99:99"))

    assert not first[0].success
    assert first[0].metadata["fallback"] is True
    assert again[0].module == "local"
    assert again[0].metadata["cache_hit"] is False


async def say(pipeline, text, ts):
    await pipeline.handle_transcript(TranscriptEvent("hey lark", False, ts - 0.1))
    return await pipeline.handle_transcript(TranscriptEvent(f"hey lark {text}", True, ts))


@pytest.mark.asyncio
async def test_repeated_utterances_are_deduplicated_except_miranda(make_pipeline):
    pipeline = make_pipeline()

    assert len(await say(pipeline, "check threat level", 10.0)) == 1
    assert await say(pipeline, "check threat level", 11.5) == []
    assert len(await say(pipeline, "check threat level", 12.0)) == 1

    assert len(await say(pipeline, "read miranda rights", 20.0)) == 1
    assert len(await say(pipeline, "read miranda rights", 20.5)) == 1

    stats = pipeline.stats()
    assert stats.total == 4
    assert stats.by_action == {"threat": 2, "miranda": 2}


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(make_pipeline):
    sleep = RecordingSleep()
    provider = FakeProvider(errors={"*": ConnectionError("connection reset")})
    pipeline = make_pipeline(provider, sleep=sleep)

    first = await pipeline.process_command(command("what is the capital of france"))
    assert first[0].metadata["queued"] is True
    await pipeline.queue.schedule_drain()

    assert sleep.delays == [1.0, 2.0, 4.0]
    assert len(pipeline.queue.dropped) == 1


@pytest.mark.asyncio
async def test_repeated_errors_recommend_stepping_down(make_pipeline):
    provider = FakeProvider(errors={"*": ApiError("bad request", recoverable=False)})
    pipeline = make_pipeline(provider)

    responses = []
    for text in ("unknown one", "unknown two", "unknown three"):
        results = await pipeline.process_command(command(text))
        responses.append(results[0])

    assert not responses[1].response.endswith(STEP_DOWN_HINT)
    assert responses[2].response.endswith(STEP_DOWN_HINT)
    assert responses[2].metadata["step_down"] is True


@pytest.mark.asyncio
async def test_emergency_mode_keeps_local_commands_working(make_pipeline):
    pipeline = make_pipeline()
    assert pipeline.force_emergency_mode(True) is DegradationLevel.EMERGENCY_ONLY

    results = await pipeline.process_command(command("read miranda rights in arabic"))

    assert results[0].success
    assert results[0].metadata["language"] == "arabic"


@pytest.mark.asyncio
async def test_results_are_spoken_in_the_miranda_language(make_pipeline, cfg):
    speech = FakeSpeech()
    pipeline = make_pipeline(speech=speech)

    await pipeline.process_command(command("read miranda rights in vietnamese"))

    assert speech.spoken[0][1] == cfg.voice_id
    assert speech.spoken[0][2] == "vietnamese"


@pytest.mark.asyncio
async def test_speech_failures_are_recorded_not_raised(make_pipeline):
    pipeline = make_pipeline(speech=FakeSpeech(fail=True))
    results = await pipeline.process_command(command("check threat"))
    assert results[0].success
    assert pipeline.health.service_health()["speech-synthesis"].consecutive_failures == 1


@pytest.mark.asyncio
async def test_transcripts_flow_through_wake_word(make_pipeline):
    pipeline = make_pipeline()
    assert await pipeline.handle_transcript(TranscriptEvent("look up statute 14:30", True, 0.0)) == []
    assert await pipeline.handle_transcript(TranscriptEvent("hey lark", False, 1.0)) == []

    results = await pipeline.handle_transcript(TranscriptEvent("hey lark look up statute 14:30", True, 1.5))

    assert len(results) == 1
    assert results[0].action is ActionKind.STATUTE


class OneShotCapture:
    def __init__(self, items):
        self.items = items

    async def open_session(self):
        for item in self.items:
            if isinstance(item, BaseException):
                raise item
            yield item


@pytest.mark.asyncio
async def test_run_loop_processes_commands_until_permission_denied(make_pipeline):
    capture = OneShotCapture(
        [
            TranscriptEvent("hey lark", False),
            TranscriptEvent("hey lark read miranda rights", True),
            PermissionDeniedError("microphone revoked"),
        ]
    )
    source = TranscriptSource(capture, sleep=RecordingSleep())
    pipeline = make_pipeline(source=source)

    with pytest.raises(PermissionDeniedError):
        await asyncio.wait_for(pipeline.run(), timeout=2.0)

    stats = pipeline.stats()
    assert stats.total == 1
    assert stats.by_action == {"miranda": 1}
    assert not source.running
