"""Public API for the LARK voice command pipeline."""

from .config import VoiceConfig, load_config
from .types import (
    ActionKind,
    Command,
    CommandContext,
    CommandResult,
    DegradationLevel,
    FallbackLevel,
    Priority,
    TranscriptEvent,
    WakeWordState,
)
from .intent import ResolvedIntent
from .errors import CommandError, ErrorKind, PermissionDeniedError, classify_exception
from .events import EventBus
from .cache import CommandCache, PersistentStore
from .matcher import LocalCommandMatcher, match_command
from .chain import split_command_chain
from .fallback import DegradationManager
from .prompt_builder import BuiltPrompt, build_prompt
from .interpreter import GeminiProvider, RemoteInterpreter
from .executor import CommandExecutor
from .retry_queue import RetryQueue
from .telemetry import TelemetryRecorder
from .transcript import TranscriptSource
from .wake_word import WakeWordDetector
from .logging_utils import append_event, ensure_log_dir
from .pipeline import VoicePipeline, build_pipeline

__all__ = [
    "VoiceConfig",
    "load_config",
    "ActionKind",
    "Command",
    "CommandContext",
    "CommandResult",
    "DegradationLevel",
    "FallbackLevel",
    "Priority",
    "TranscriptEvent",
    "WakeWordState",
    "ResolvedIntent",
    "CommandError",
    "ErrorKind",
    "PermissionDeniedError",
    "classify_exception",
    "EventBus",
    "CommandCache",
    "PersistentStore",
    "LocalCommandMatcher",
    "match_command",
    "split_command_chain",
    "DegradationManager",
    "BuiltPrompt",
    "build_prompt",
    "GeminiProvider",
    "RemoteInterpreter",
    "CommandExecutor",
    "RetryQueue",
    "TelemetryRecorder",
    "TranscriptSource",
    "WakeWordDetector",
    "append_event",
    "ensure_log_dir",
    "VoicePipeline",
    "build_pipeline",
]
