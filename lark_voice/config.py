"""Configuration loader for the voice command pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from .constants import (
    CACHE_MAX_AGE_DAYS,
    CACHE_SWEEP_INTERVAL_S,
    COMMAND_WINDOW_S,
    DEDUP_WINDOW_S,
    DEFAULT_CACHE_PATH,
    DEFAULT_DEBUG,
    DEFAULT_EVENT_LOG_PATH,
    DEFAULT_LOG_MAX_BYTES,
    DEFAULT_MAX_CONCURRENT_REMOTE,
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_MODEL_NAME,
    DEFAULT_SECONDARY_MODEL_NAME,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_S,
    DEFAULT_VOICE_ID,
    DEFAULT_WAKE_PHRASES,
    DEFAULT_WAKE_WORD,
    FAILURE_THRESHOLD,
    GEMINI_API_KEY_ENV_CANDIDATES,
    LOOSE_MAX_TOKEN_LEN,
    LOOSE_MIN_SIMILARITY,
    MAX_CONSECUTIVE_ERRORS,
    MAX_RETRIES,
    MIN_TRANSCRIPT_CONFIDENCE,
    MIN_WAKE_CONFIDENCE,
    RESTART_BASE_MS,
    RESTART_CAP_MS,
    RESTART_STABILITY_S,
    RETRY_BASE_DELAY_S,
    RETRY_MAX_DELAY_S,
    TELEMETRY_ALERT_SUCCESS_RATE,
)


@dataclass(frozen=True)
class VoiceConfig:
    model_name: str = DEFAULT_MODEL_NAME
    secondary_model_name: str = DEFAULT_SECONDARY_MODEL_NAME
    api_key: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    temperature: float = DEFAULT_TEMPERATURE
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    max_concurrent_remote: int = DEFAULT_MAX_CONCURRENT_REMOTE
    debug: bool = DEFAULT_DEBUG
    wake_phrases: tuple[str, ...] = DEFAULT_WAKE_PHRASES
    wake_word: str = DEFAULT_WAKE_WORD
    command_window_s: float = COMMAND_WINDOW_S
    dedup_window_s: float = DEDUP_WINDOW_S
    min_transcript_confidence: float = MIN_TRANSCRIPT_CONFIDENCE
    min_wake_confidence: float = MIN_WAKE_CONFIDENCE
    loose_max_token_len: int = LOOSE_MAX_TOKEN_LEN
    loose_min_similarity: float = LOOSE_MIN_SIMILARITY
    restart_base_ms: int = RESTART_BASE_MS
    restart_cap_ms: int = RESTART_CAP_MS
    restart_stability_s: float = RESTART_STABILITY_S
    cache_path: str = DEFAULT_CACHE_PATH
    cache_max_age_days: int = CACHE_MAX_AGE_DAYS
    cache_sweep_interval_s: float = CACHE_SWEEP_INTERVAL_S
    retry_base_delay_s: float = RETRY_BASE_DELAY_S
    retry_max_delay_s: float = RETRY_MAX_DELAY_S
    max_retries: int = MAX_RETRIES
    failure_threshold: int = FAILURE_THRESHOLD
    max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS
    event_log_path: str = DEFAULT_EVENT_LOG_PATH
    log_max_bytes: int = DEFAULT_LOG_MAX_BYTES
    telemetry_alert_success_rate: float = TELEMETRY_ALERT_SUCCESS_RATE
    voice_id: str = DEFAULT_VOICE_ID


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_phrases(value: str | None, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    phrases = tuple(p.strip().lower() for p in value.split(",") if p.strip())
    return phrases or default


def load_config(env: Mapping[str, str] | None = None) -> VoiceConfig:
    """Load configuration from environment variables.

    Args:
        env: Optional mapping of environment variables for easier testing.

    Returns:
        A fully populated :class:`VoiceConfig` with safe defaults.
    """

    environment = env if env is not None else os.environ

    api_key: str | None = None
    for key_name in GEMINI_API_KEY_ENV_CANDIDATES:
        candidate = environment.get(key_name)
        if candidate:
            api_key = candidate
            break

    return VoiceConfig(
        model_name=environment.get("LARK_MODEL_NAME", DEFAULT_MODEL_NAME),
        secondary_model_name=environment.get(
            "LARK_SECONDARY_MODEL_NAME", DEFAULT_SECONDARY_MODEL_NAME
        ),
        api_key=api_key,
        timeout_s=_parse_float(environment.get("LARK_TIMEOUT_S"), DEFAULT_TIMEOUT_S),
        temperature=_parse_float(environment.get("LARK_TEMPERATURE"), DEFAULT_TEMPERATURE),
        max_output_tokens=_parse_int(
            environment.get("LARK_MAX_OUTPUT_TOKENS"), DEFAULT_MAX_OUTPUT_TOKENS
        ),
        max_concurrent_remote=_parse_int(
            environment.get("LARK_MAX_CONCURRENT_REMOTE"), DEFAULT_MAX_CONCURRENT_REMOTE
        ),
        debug=_parse_bool(environment.get("LARK_DEBUG"), DEFAULT_DEBUG),
        wake_phrases=_parse_phrases(environment.get("LARK_WAKE_PHRASES"), DEFAULT_WAKE_PHRASES),
        wake_word=environment.get("LARK_WAKE_WORD", DEFAULT_WAKE_WORD).strip().lower(),
        command_window_s=_parse_float(environment.get("LARK_COMMAND_WINDOW_S"), COMMAND_WINDOW_S),
        dedup_window_s=_parse_float(environment.get("LARK_DEDUP_WINDOW_S"), DEDUP_WINDOW_S),
        min_transcript_confidence=_parse_float(
            environment.get("LARK_MIN_TRANSCRIPT_CONFIDENCE"), MIN_TRANSCRIPT_CONFIDENCE
        ),
        min_wake_confidence=_parse_float(
            environment.get("LARK_MIN_WAKE_CONFIDENCE"), MIN_WAKE_CONFIDENCE
        ),
        loose_max_token_len=_parse_int(
            environment.get("LARK_LOOSE_MAX_TOKEN_LEN"), LOOSE_MAX_TOKEN_LEN
        ),
        loose_min_similarity=_parse_float(
            environment.get("LARK_LOOSE_MIN_SIMILARITY"), LOOSE_MIN_SIMILARITY
        ),
        restart_base_ms=_parse_int(environment.get("LARK_RESTART_BASE_MS"), RESTART_BASE_MS),
        restart_cap_ms=_parse_int(environment.get("LARK_RESTART_CAP_MS"), RESTART_CAP_MS),
        restart_stability_s=_parse_float(
            environment.get("LARK_RESTART_STABILITY_S"), RESTART_STABILITY_S
        ),
        cache_path=environment.get("LARK_CACHE_PATH", DEFAULT_CACHE_PATH),
        cache_max_age_days=_parse_int(
            environment.get("LARK_CACHE_MAX_AGE_DAYS"), CACHE_MAX_AGE_DAYS
        ),
        cache_sweep_interval_s=_parse_float(
            environment.get("LARK_CACHE_SWEEP_INTERVAL_S"), CACHE_SWEEP_INTERVAL_S
        ),
        retry_base_delay_s=_parse_float(
            environment.get("LARK_RETRY_BASE_DELAY_S"), RETRY_BASE_DELAY_S
        ),
        retry_max_delay_s=_parse_float(
            environment.get("LARK_RETRY_MAX_DELAY_S"), RETRY_MAX_DELAY_S
        ),
        max_retries=_parse_int(environment.get("LARK_MAX_RETRIES"), MAX_RETRIES),
        failure_threshold=_parse_int(
            environment.get("LARK_FAILURE_THRESHOLD"), FAILURE_THRESHOLD
        ),
        max_consecutive_errors=_parse_int(
            environment.get("LARK_MAX_CONSECUTIVE_ERRORS"), MAX_CONSECUTIVE_ERRORS
        ),
        event_log_path=environment.get("LARK_EVENT_LOG_PATH", DEFAULT_EVENT_LOG_PATH),
        log_max_bytes=_parse_int(environment.get("LARK_LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
        telemetry_alert_success_rate=_parse_float(
            environment.get("LARK_TELEMETRY_ALERT_SUCCESS_RATE"), TELEMETRY_ALERT_SUCCESS_RATE
        ),
        voice_id=environment.get("LARK_VOICE_ID", DEFAULT_VOICE_ID),
    )
