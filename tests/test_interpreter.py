from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from conftest import FakeProvider

from lark_voice.config import VoiceConfig
from lark_voice.constants import PRIMARY_INTERPRETER, SECONDARY_INTERPRETER
from lark_voice.errors import ApiError, ErrorKind, InterpreterTimeoutError, NetworkError
from lark_voice.fallback import DegradationManager
from lark_voice.interpreter import GeminiProvider, RemoteInterpreter, parse_interpretation
from lark_voice.types import ActionKind, CommandContext, CommandResult

PRIMARY = VoiceConfig().model_name
SECONDARY = VoiceConfig().secondary_model_name


def test_parse_fenced_json():
    raw = '```json\n{"action": "statute", "parameters": {"statute": "14:30"}, "resultText": "Murder."}\n```'
    intent = parse_interpretation(raw, "what is the murder statute")
    assert intent.action is ActionKind.STATUTE
    assert intent.params.statute == "14:30"
    assert intent.result_text == "Murder."
    assert intent.source == "remote"


def test_parse_non_json_becomes_general_answer():
    intent = parse_interpretation("School zones are 20 mph.", "school zone speed limit")
    assert intent.action is ActionKind.GENERAL_KNOWLEDGE
    assert intent.result_text == "School zones are 20 mph."
    assert intent.text == "school zone speed limit"
    assert "unstructured_response" in intent.notes


def test_parse_validates_miranda_language():
    intent = parse_interpretation('{"action": "miranda", "parameters": {"language": "klingon"}}', "rights")
    assert intent.action is ActionKind.MIRANDA
    assert intent.params.language == "english"


def test_parse_unknown_action_is_general():
    intent = parse_interpretation('{"action": "dance", "resultText": "No."}', "dance for me")
    assert intent.action is ActionKind.GENERAL_KNOWLEDGE
    assert intent.result_text == "No."
    assert "unsupported_action:dance" in intent.notes


@pytest.mark.asyncio
async def test_interpret_uses_primary_and_threads_context():
    provider = FakeProvider()
    health = DegradationManager()
    interpreter = RemoteInterpreter(provider, health)
    context = CommandContext()
    context.previous_result = CommandResult(command="check threat", response="Subject fled north", success=True)

    intent = await interpreter.interpret("where did they go", context)

    assert intent.result_text == "answer"
    assert f"model:{PRIMARY}" in intent.notes
    assert provider.calls == [PRIMARY]
    assert "Subject fled north" in provider.prompts[0]
    assert interpreter.last_meta["model"] == PRIMARY
    assert health.service_health()[PRIMARY_INTERPRETER].last_success_at is not None


@pytest.mark.asyncio
async def test_recoverable_failure_falls_through_to_secondary():
    provider = FakeProvider(errors={PRIMARY: NetworkError("connection reset")})
    health = DegradationManager()
    interpreter = RemoteInterpreter(provider, health)

    intent = await interpreter.interpret("what is the capital of france")

    assert provider.calls == [PRIMARY, SECONDARY]
    assert f"model:{SECONDARY}" in intent.notes
    assert health.service_health()[PRIMARY_INTERPRETER].consecutive_failures == 1


@pytest.mark.asyncio
async def test_failing_primary_is_skipped():
    provider = FakeProvider()
    health = DegradationManager()
    for _ in range(3):
        health.record_outcome(PRIMARY_INTERPRETER, False)
    interpreter = RemoteInterpreter(provider, health)

    await interpreter.interpret("what is the capital of france")

    assert provider.calls == [SECONDARY]


@pytest.mark.asyncio
async def test_non_recoverable_error_stops_the_walk():
    provider = FakeProvider(errors={PRIMARY: ApiError("bad request", recoverable=False)})
    interpreter = RemoteInterpreter(provider, DegradationManager())

    with pytest.raises(ApiError):
        await interpreter.interpret("anything")
    assert provider.calls == [PRIMARY]


@pytest.mark.asyncio
async def test_timeout_is_its_own_error_kind():
    provider = FakeProvider(delay=0.5)
    health = DegradationManager()
    interpreter = RemoteInterpreter(provider, health, cfg=VoiceConfig(timeout_s=0.01))

    with pytest.raises(InterpreterTimeoutError) as excinfo:
        await interpreter.interpret("anything")

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert excinfo.value.recoverable
    assert health.service_health()[SECONDARY_INTERPRETER].consecutive_failures == 1


def test_gemini_provider_requires_key():
    with pytest.raises(ApiError) as excinfo:
        GeminiProvider(VoiceConfig(api_key=None))
    assert not excinfo.value.recoverable


@pytest.mark.asyncio
async def test_gemini_provider_passes_generation_config():
    generate = AsyncMock(return_value=SimpleNamespace(text='{"action": "tactical"}'))
    client = SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate)))
    provider = GeminiProvider(VoiceConfig(api_key="k", temperature=0.1), client=client)

    text = await provider.complete("system", "user", model="gemini-test")

    assert text == '{"action": "tactical"}'
    kwargs = generate.await_args.kwargs
    assert kwargs["model"] == "gemini-test"
    assert kwargs["contents"] == "user"
    assert kwargs["config"].system_instruction == "system"
    assert kwargs["config"].temperature == 0.1
