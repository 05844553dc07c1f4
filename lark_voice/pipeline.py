"""Voice command orchestration: transcript in, executed and cached results out."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional, Protocol

from .cache import CommandCache, PersistentStore
from .chain import new_chain_id, split_command_chain
from .config import VoiceConfig
from .constants import (
    NO_OFFLINE_MATCH_RESPONSE,
    OFFLINE_UNAVAILABLE_RESPONSE,
    QUEUE_MAX_HISTORY,
    RETRY_QUEUED_HINT,
    SPEECH_SERVICE,
    STEP_DOWN_HINT,
)
from .errors import CommandError, NetworkError, PermissionDeniedError, classify_exception, user_message_for
from .events import COMMAND_FAILED, EventBus
from .executor import CommandExecutor
from .fallback import DegradationManager
from .interpreter import GeminiProvider, InterpreterProvider, RemoteInterpreter
from .intent import ResolvedIntent
from .matcher import LocalCommandMatcher
from .normalize import normalize_command_text
from .retry_queue import RetryQueue
from .telemetry import TelemetryRecorder, TelemetryStats
from .transcript import SpeechCapture, TranscriptSource
from .types import (
    ActionKind,
    Command,
    CommandContext,
    CommandResult,
    DegradationLevel,
    FallbackLevel,
    QueueItem,
    TranscriptEvent,
)
from .wake_word import WakeWordDetector

LOGGER = logging.getLogger(__name__)


class SpeechSynthesizer(Protocol):
    async def speak(self, text: str, voice_id: str, target_language: str | None = None) -> None:  # pragma: no cover - interface only
        ...

    async def stop(self) -> None:  # pragma: no cover - interface only
        ...


def _model_from_notes(intent: ResolvedIntent) -> str | None:
    for note in intent.notes:
        if note.startswith("model:"):
            return note.split(":", 1)[1]
    return None


class VoicePipeline:
    """Wire the detector, cache, matcher, interpreter, executor and queue together.

    Every collaborator is injected; anything left out gets a default built
    from ``cfg``. A missing ``cache`` disables caching and a missing
    ``interpreter`` limits the pipeline to local patterns.
    """

    def __init__(
        self,
        cfg: VoiceConfig | None = None,
        *,
        cache: CommandCache | None = None,
        matcher: LocalCommandMatcher | None = None,
        interpreter: RemoteInterpreter | None = None,
        executor: CommandExecutor | None = None,
        health: DegradationManager | None = None,
        telemetry: TelemetryRecorder | None = None,
        detector: WakeWordDetector | None = None,
        source: TranscriptSource | None = None,
        speech: SpeechSynthesizer | None = None,
        events: EventBus | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.cfg = cfg or VoiceConfig()
        self.events = events or EventBus()
        self.health = health or DegradationManager(
            failure_threshold=self.cfg.failure_threshold,
            max_consecutive_errors=self.cfg.max_consecutive_errors,
            events=self.events,
        )
        self.cache = cache
        self.matcher = matcher or LocalCommandMatcher()
        self.interpreter = interpreter
        self.executor = executor or CommandExecutor()
        self.telemetry = telemetry or TelemetryRecorder(
            events=self.events, alert_success_rate=self.cfg.telemetry_alert_success_rate
        )
        self.detector = detector or WakeWordDetector(
            self.cfg, events=self.events, command_matcher=self.matcher
        )
        self.source = source
        self.speech = speech
        self.queue = RetryQueue(
            self._process_queued,
            base_delay_s=self.cfg.retry_base_delay_s,
            max_delay_s=self.cfg.retry_max_delay_s,
            max_retries=self.cfg.max_retries,
            events=self.events,
            on_result=self._on_queued_result,
            sleep=sleep,
        )
        self.queued_results: deque[CommandResult] = deque(maxlen=QUEUE_MAX_HISTORY)
        self._stopping = False

    # Connectivity -------------------------------------------------------
    def set_network_online(self, online: bool) -> DegradationLevel:
        level = self.health.set_network_online(online)
        self.queue.set_online(online)
        return level

    def force_emergency_mode(self, enabled: bool) -> DegradationLevel:
        return self.health.force_emergency_mode(enabled)

    def stats(self, window_s: float | None = None) -> TelemetryStats:
        if window_s is None:
            return self.telemetry.stats()
        return self.telemetry.stats(window_s)

    # Command processing -------------------------------------------------
    async def submit_text(self, text: str) -> list[CommandResult]:
        """Process typed or push-to-talk text without waiting for a wake word."""

        command = self.detector.submit(text)
        if command is None:
            return []
        return await self.process_command(command)

    async def handle_transcript(self, event: TranscriptEvent) -> list[CommandResult]:
        command = self.detector.handle(event)
        if command is None:
            return []
        return await self.process_command(command)

    async def process_command(self, command: Command) -> list[CommandResult]:
        """Run one command (possibly a chain) and return its results in order.

        While the queue is paused offline, the command runs at once and only
        joins the queue if it turns out to need the network. After recovery,
        commands that do not outrank the backlog join it so earlier commands
        keep their place.
        """

        if self._joins_backlog(command):
            self.queue.enqueue(command)
            self.queue.schedule_drain()
            return [self._queued_result(command)]
        return await self._run_chain(command, from_queue=False)

    def _joins_backlog(self, command: Command) -> bool:
        if not self.queue.has_backlog or self.queue.is_paused:
            return False
        head = self.queue.head_priority
        return head is None or command.priority <= head

    async def _run_chain(self, command: Command, *, from_queue: bool) -> list[CommandResult]:
        started = time.perf_counter()
        context = command.context

        cached = await self._from_cache(command, context, started)
        if cached is not None:
            await self._speak(cached)
            return [cached]

        parts = list(command.chain_steps) or split_command_chain(command.normalized_text)
        if not parts:
            return []
        chain_id = command.chain_id or (new_chain_id() if len(parts) > 1 else None)
        if len(parts) > 1:
            LOGGER.info("Processing %d-step chain %s", len(parts), chain_id)

        results: list[CommandResult] = []
        for index, part in enumerate(parts):
            sub = dataclasses.replace(
                command,
                raw_text=part if len(parts) > 1 else command.raw_text,
                normalized_text=normalize_command_text(part),
                chain_id=chain_id,
                chain_steps=(),
            )
            sub_started = time.perf_counter()
            try:
                result = await self._process_single(sub, context, check_cache=len(parts) > 1)
            except CommandError as error:
                if from_queue and error.recoverable:
                    self._record_failure(sub, error, sub_started)
                    raise
                result = self._handle_failure(sub, error, parts[index:], sub_started, from_queue=from_queue)
                results.append(result)
                await self._speak(result)
                break
            results.append(result)
            await self._speak(result)
            if not result.success:
                LOGGER.info("Chain %s stopped at step %d", chain_id, index + 1)
                break
        return results

    async def _process_single(
        self, command: Command, context: CommandContext, *, check_cache: bool
    ) -> CommandResult:
        started = time.perf_counter()
        if check_cache:
            cached = await self._from_cache(command, context, started)
            if cached is not None:
                return cached

        intent = self.matcher.match(command.normalized_text)
        fallback_level = FallbackLevel.OFFLINE
        if intent is None:
            recommendation = self.health.recommend_service("command", command.priority)
            fallback_level = recommendation.fallback_level
            if self.interpreter is None:
                result = CommandResult(
                    command=command.normalized_text,
                    response=NO_OFFLINE_MATCH_RESPONSE,
                    success=False,
                    action=ActionKind.UNKNOWN,
                    module="offline",
                    metadata={"fallback_level": FallbackLevel.OFFLINE.value},
                )
                self._finish(command, result, started)
                return result
            if not self.health.network_online:
                raise NetworkError("network offline")
            intent = await self.interpreter.interpret(command.normalized_text, context)

        result = await self.executor.execute(intent, context)
        metadata = {**result.metadata, "cache_hit": False, "fallback_level": fallback_level.value}
        model = _model_from_notes(intent)
        if model:
            metadata["model"] = model
        result = dataclasses.replace(result, metadata=metadata)
        self.executor.update_context(context, command, result, intent)

        if self.cache is not None:
            await self.cache.put(result)
        self._finish(command, result, started)
        return result

    async def _from_cache(
        self, command: Command, context: CommandContext, started: float
    ) -> Optional[CommandResult]:
        if self.cache is None:
            return None
        entry = await self.cache.get(command.normalized_text)
        if entry is None:
            return None
        result = dataclasses.replace(
            entry.result,
            module="cache",
            metadata={**entry.result.metadata, "cache_hit": True, "source": "cache"},
        )
        self.executor.update_context(context, command, result)
        self._finish(command, result, started)
        return result

    def _finish(self, command: Command, result: CommandResult, started: float) -> None:
        latency_ms = (time.perf_counter() - started) * 1000.0
        self.telemetry.record(command, result, latency_ms)
        self.health.record_command_outcome(result.success)

    def _record_failure(self, command: Command, error: CommandError, started: float) -> CommandResult:
        result = CommandResult(
            command=command.normalized_text,
            response=user_message_for(error, offline=not self.health.network_online),
            success=False,
            action=ActionKind.UNKNOWN,
            module="error",
            metadata=error.to_metadata(),
        )
        latency_ms = (time.perf_counter() - started) * 1000.0
        self.telemetry.record(command, result, latency_ms, error_kind=error.kind.value)
        self.health.record_command_outcome(False)
        return result

    def _handle_failure(
        self,
        command: Command,
        error: CommandError,
        remaining: list[str],
        started: float,
        *,
        from_queue: bool,
    ) -> CommandResult:
        offline = not self.health.network_online
        latency_ms = (time.perf_counter() - started) * 1000.0
        queued = error.recoverable and not from_queue and not isinstance(error, PermissionDeniedError)

        if queued:
            retry = dataclasses.replace(
                command,
                raw_text="; ".join(remaining),
                normalized_text=normalize_command_text("; ".join(remaining)),
                chain_steps=tuple(remaining) if len(remaining) > 1 else (),
            )
            self.queue.enqueue(retry)
            if not offline:
                self.queue.schedule_drain()
            response = OFFLINE_UNAVAILABLE_RESPONSE if offline else (
                user_message_for(error) + RETRY_QUEUED_HINT
            )
        else:
            response = user_message_for(error, offline=offline)
            LOGGER.error("Command %r failed: %s", command.normalized_text, error)
            self.events.emit(
                COMMAND_FAILED,
                command=command.raw_text,
                reason="non_recoverable",
                error_type=error.kind.value,
                retry_count=0,
            )

        step_down = self.health.record_command_outcome(False)
        if step_down:
            LOGGER.warning(
                "%d consecutive command errors; recommending a lower degradation level",
                self.health.command_error_streak,
            )
            response += STEP_DOWN_HINT

        result = CommandResult(
            command=command.normalized_text,
            response=response,
            success=False,
            action=ActionKind.UNKNOWN,
            module="error",
            metadata={**error.to_metadata(), "queued": queued, "step_down": step_down},
        )
        self.telemetry.record(command, result, latency_ms, error_kind=error.kind.value)
        return result

    def _queued_result(self, command: Command) -> CommandResult:
        return CommandResult(
            command=command.normalized_text,
            response="Earlier commands are still being retried." + RETRY_QUEUED_HINT,
            success=False,
            action=ActionKind.UNKNOWN,
            module="queue",
            metadata={"queued": True, "backlog": len(self.queue)},
        )

    async def _process_queued(self, command: Command) -> CommandResult:
        results = await self._run_chain(command, from_queue=True)
        if not results:
            return CommandResult(command=command.normalized_text, response="", success=False)
        return results[-1]

    def _on_queued_result(self, item: QueueItem, result: CommandResult) -> None:
        LOGGER.info(
            "Queued command %r completed after %d retries", item.command.normalized_text, item.retry_count
        )
        self.queued_results.append(result)

    async def _speak(self, result: CommandResult) -> None:
        if self.speech is None or not result.response:
            return
        language = result.metadata.get("language") if result.action is ActionKind.MIRANDA else None
        try:
            await self.speech.speak(result.response, self.cfg.voice_id, target_language=language)
        except Exception as exc:
            error = classify_exception(exc, service=SPEECH_SERVICE)
            LOGGER.warning("Speech synthesis failed: %s", error)
            self.health.record_outcome(SPEECH_SERVICE, False)
            return
        self.health.record_outcome(SPEECH_SERVICE, True)

    # Listening loop -----------------------------------------------------
    async def run(self) -> None:
        """Feed transcripts to the detector until stopped.

        A permission denial from the capture ends the loop and propagates.
        """

        if self.source is None:
            raise RuntimeError("VoicePipeline.run() needs a TranscriptSource")
        self._stopping = False
        self.source.start()
        sweeper: Optional[asyncio.Task[None]] = None
        if self.cache is not None:
            sweeper = asyncio.get_running_loop().create_task(
                self.cache.run_sweeps(self.cfg.cache_sweep_interval_s)
            )
        try:
            while not self._stopping:
                try:
                    event = await self.source.next_event(self.detector.time_until_timeout())
                except PermissionDeniedError:
                    LOGGER.error("Microphone permission denied; stopping the listening loop")
                    raise
                if event is None:
                    if self.detector.check_timeout():
                        continue
                    if not self.source.running:
                        break
                    continue
                await self.handle_transcript(event)
        finally:
            if sweeper is not None:
                sweeper.cancel()
            await self.source.stop()
            await self.telemetry.flush()

    async def stop(self) -> None:
        self._stopping = True
        if self.source is not None:
            await self.source.stop()
        if self.speech is not None:
            await self.speech.stop()


def build_pipeline(
    cfg: VoiceConfig,
    *,
    offline: bool = False,
    provider: InterpreterProvider | None = None,
    capture: SpeechCapture | None = None,
    speech: SpeechSynthesizer | None = None,
) -> VoicePipeline:
    """Assemble a pipeline with SQLite storage and, when possible, Gemini."""

    events = EventBus()
    health = DegradationManager(
        failure_threshold=cfg.failure_threshold,
        max_consecutive_errors=cfg.max_consecutive_errors,
        events=events,
    )
    store = PersistentStore(cfg.cache_path)
    cache = CommandCache(store, max_age_days=cfg.cache_max_age_days)
    telemetry = TelemetryRecorder(
        store=store,
        event_log_path=cfg.event_log_path,
        log_max_bytes=cfg.log_max_bytes,
        events=events,
        alert_success_rate=cfg.telemetry_alert_success_rate,
    )
    telemetry.restore()

    interpreter: RemoteInterpreter | None = None
    if not offline and (provider is not None or cfg.api_key):
        interpreter = RemoteInterpreter(provider or GeminiProvider(cfg), health, cfg=cfg)
    elif not offline:
        LOGGER.warning("No Gemini API key configured; running with local patterns only")

    source = None
    if capture is not None:
        source = TranscriptSource(
            capture,
            base_ms=cfg.restart_base_ms,
            cap_ms=cfg.restart_cap_ms,
            stability_s=cfg.restart_stability_s,
            events=events,
        )

    pipeline = VoicePipeline(
        cfg,
        cache=cache,
        interpreter=interpreter,
        health=health,
        telemetry=telemetry,
        source=source,
        speech=speech,
        events=events,
    )
    if offline:
        pipeline.set_network_online(False)
    return pipeline


__all__ = ["SpeechSynthesizer", "VoicePipeline", "build_pipeline"]
