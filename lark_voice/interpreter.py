"""Remote language-model interpretation of commands the local matcher missed."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Mapping, Optional, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from .config import VoiceConfig
from .constants import DEFAULT_TOP_P, PRIMARY_INTERPRETER, SECONDARY_INTERPRETER
from .errors import ApiError, CommandError, classify_exception
from .fallback import DegradationManager
from .intent import (
    GeneralParams,
    MirandaParams,
    ResolvedIntent,
    StatuteParams,
    TacticalParams,
    ThreatParams,
    general_intent,
)
from .matcher import detect_language
from .prompt_builder import BuiltPrompt, build_prompt
from .types import ActionKind, CommandContext

LOGGER = logging.getLogger(__name__)

_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


class InterpreterProvider(Protocol):
    async def complete(self, system_prompt: str, user_text: str, *, model: str) -> str:  # pragma: no cover - interface only
        ...


class GeminiProvider:
    """Async Gemini wrapper; translates SDK errors into pipeline errors."""

    def __init__(self, cfg: VoiceConfig, client: Any | None = None) -> None:
        self.cfg = cfg
        if client is None and not cfg.api_key:
            raise ApiError("missing_api_key", recoverable=False)
        self._client = client if client is not None else genai.Client(api_key=cfg.api_key)

    async def complete(self, system_prompt: str, user_text: str, *, model: str) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=model,
                contents=user_text,
                config=genai_types.GenerateContentConfig(
                    system_instruction=system_prompt,
                    max_output_tokens=self.cfg.max_output_tokens,
                    temperature=self.cfg.temperature,
                    top_p=DEFAULT_TOP_P,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as exc:
            code = getattr(exc, "code", None)
            recoverable = code is None or code == 429 or code >= 500
            raise ApiError(f"{model}: {exc}", recoverable=recoverable) from exc
        return self._extract_text(response)

    @staticmethod
    def _extract_text(response: object) -> str:
        if response is None:
            return ""
        text = getattr(response, "text", None)
        if isinstance(text, str):
            return text
        return str(response)


def _coerce_parameters(raw: object) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return {str(k): v for k, v in raw.items()}
    return {}


def parse_interpretation(raw_text: str, command_text: str) -> ResolvedIntent:
    """Parse ``{action, parameters, resultText}`` from provider output.

    Anything that is not a JSON object with a known action is treated as a
    general-knowledge answer whose text is the raw output.
    """

    cleaned = _CODE_FENCE_PATTERN.sub("", raw_text.strip())
    found = _JSON_OBJECT_PATTERN.search(cleaned)
    payload: object = None
    if found:
        try:
            payload = json.loads(found.group(0))
        except json.JSONDecodeError:
            payload = None
    if not isinstance(payload, dict):
        intent = general_intent(command_text, result_text=raw_text.strip() or None)
        intent.notes.append("unstructured_response")
        return intent

    action = ActionKind.parse(payload.get("action"))
    params = _coerce_parameters(payload.get("parameters"))
    result_text = payload.get("resultText") or payload.get("result_text") or payload.get("result")
    result_text = str(result_text).strip() if result_text else None

    if action is ActionKind.MIRANDA:
        language = detect_language(str(params.get("language", "")))
        return ResolvedIntent(action, MirandaParams(language=language), command_text, result_text, "remote")
    if action is ActionKind.STATUTE and params.get("statute"):
        return ResolvedIntent(action, StatuteParams(statute=str(params["statute"])), command_text, result_text, "remote")
    if action is ActionKind.THREAT:
        description = str(params.get("description") or params.get("threat") or command_text)
        return ResolvedIntent(action, ThreatParams(description=description), command_text, result_text, "remote")
    if action is ActionKind.TACTICAL:
        query = str(params.get("query") or command_text)
        return ResolvedIntent(action, TacticalParams(query=query), command_text, result_text, "remote")

    intent = ResolvedIntent(
        ActionKind.GENERAL_KNOWLEDGE,
        GeneralParams(query=str(params.get("query") or command_text)),
        command_text,
        result_text or (None if payload else raw_text.strip()),
        "remote",
    )
    if action is not ActionKind.GENERAL_KNOWLEDGE:
        intent.notes.append(f"unsupported_action:{payload.get('action')}")
    return intent


class RemoteInterpreter:
    """Send unresolved commands to the provider, walking interpreter services in priority order.

    Each service maps to one model. A service the degradation manager marks as
    failing is skipped while a healthier one exists; if every service is
    failing the primary is still tried, since there is no alternative left.
    """

    def __init__(
        self,
        provider: InterpreterProvider,
        health: DegradationManager,
        *,
        cfg: VoiceConfig | None = None,
        models: Mapping[str, str] | None = None,
    ) -> None:
        self.cfg = cfg or VoiceConfig()
        self.provider = provider
        self.health = health
        self.models = dict(
            models
            or {
                PRIMARY_INTERPRETER: self.cfg.model_name,
                SECONDARY_INTERPRETER: self.cfg.secondary_model_name,
            }
        )
        self._semaphore = asyncio.Semaphore(max(1, self.cfg.max_concurrent_remote))
        self.last_meta: dict[str, object] = {}

    def _candidates(self) -> list[str]:
        available = [name for name in self.health.available_interpreters() if name in self.models]
        if available:
            return available
        return [name for name in self.health.interpreter_services if name in self.models][:1]

    async def _call(self, service: str, prompt: BuiltPrompt) -> str:
        async with self._semaphore:
            return await asyncio.wait_for(
                self.provider.complete(prompt.system, prompt.user, model=self.models[service]),
                timeout=self.cfg.timeout_s,
            )

    async def interpret(self, text: str, context: Optional[CommandContext] = None) -> ResolvedIntent:
        prompt = build_prompt(text, context)
        last_error: CommandError | None = None
        meta: dict[str, object] = {"attempts": [], "prompt": prompt.debug}
        start = time.perf_counter()

        for service in self._candidates():
            try:
                raw = await self._call(service, prompt)
            except Exception as exc:
                error = classify_exception(exc, service=service)
                error.service = service
                self.health.record_outcome(service, False)
                meta["attempts"].append({"service": service, "error": error.kind.value})
                LOGGER.warning("Interpreter %s failed: %s (%s)", service, error, error.kind.value)
                last_error = error
                if not error.recoverable:
                    break
                continue

            self.health.record_outcome(service, True)
            meta["attempts"].append({"service": service, "ok": True})
            meta["model"] = self.models[service]
            meta["latency_ms"] = int((time.perf_counter() - start) * 1000)
            self.last_meta = meta
            intent = parse_interpretation(raw, text)
            intent.notes.append(f"model:{self.models[service]}")
            return intent

        meta["latency_ms"] = int((time.perf_counter() - start) * 1000)
        self.last_meta = meta
        if last_error is None:
            last_error = ApiError("no interpreter service configured", recoverable=False)
        raise last_error


__all__ = ["GeminiProvider", "InterpreterProvider", "RemoteInterpreter", "parse_interpretation"]
