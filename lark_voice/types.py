"""Data contract definitions for the voice command pipeline.

Results and transcript events are frozen; ``CommandContext`` is the one
mutable carrier and is only written by the executor between sub-commands.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any


class WakeWordState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    COMMAND_WINDOW_OPEN = "command_window_open"


class Priority(enum.IntEnum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class ActionKind(str, enum.Enum):
    MIRANDA = "miranda"
    STATUTE = "statute"
    THREAT = "threat"
    TACTICAL = "tactical"
    GENERAL_KNOWLEDGE = "general_knowledge"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "ActionKind":
        if isinstance(value, ActionKind):
            return value
        text = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == text:
                return member
        return cls.UNKNOWN


# Results for these actions are time-sensitive and must never be served from cache.
NON_CACHEABLE_ACTIONS = frozenset({ActionKind.THREAT})


class DegradationLevel(enum.IntEnum):
    NORMAL = 0
    DEGRADED = 1
    LIMITED = 2
    EMERGENCY_ONLY = 3


class FallbackLevel(str, enum.Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    OFFLINE = "offline"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class TranscriptEvent:
    """One interim or final hypothesis from the speech capture."""

    text: str
    is_final: bool
    timestamp: float = field(default_factory=time.monotonic)
    confidence_alternatives: tuple[tuple[str, float], ...] = ()

    @property
    def confidence(self) -> float:
        if not self.confidence_alternatives:
            return 1.0
        return self.confidence_alternatives[0][1]

    @property
    def alternatives(self) -> list[str]:
        return [text for text, _ in self.confidence_alternatives[1:]]


@dataclass
class CommandContext:
    previous_command: "Command | None" = None
    previous_result: "CommandResult | None" = None
    variables: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Command:
    raw_text: str
    normalized_text: str
    alternatives: tuple[str, ...] = ()
    chain_id: str | None = None
    priority: Priority = Priority.MEDIUM
    # Pre-split steps of a re-queued chain remainder; empty means split the text.
    chain_steps: tuple[str, ...] = ()
    context: CommandContext = field(default_factory=CommandContext, compare=False)
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class CommandResult:
    command: str
    response: str
    success: bool
    action: ActionKind = ActionKind.UNKNOWN
    module: str = "standard"
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "response": self.response,
            "success": self.success,
            "action": self.action.value,
            "module": self.module,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CommandResult":
        return cls(
            command=str(payload.get("command", "")),
            response=str(payload.get("response", "")),
            success=bool(payload.get("success", False)),
            action=ActionKind.parse(payload.get("action")),
            module=str(payload.get("module", "standard")),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass(frozen=True)
class CachedEntry:
    key: str
    result: CommandResult
    created_at: float
    ttl_policy_class: str


@dataclass
class QueueItem:
    command: Command
    retry_count: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class ServiceHealthRecord:
    service_name: str
    consecutive_failures: int = 0
    last_failure_at: float | None = None
    last_success_at: float | None = None


@dataclass(frozen=True)
class FallbackStrategy:
    level: FallbackLevel
    description: str
    capabilities: tuple[str, ...]
    response_time_ms: int
    reliability: float


@dataclass(frozen=True)
class ServiceRecommendation:
    service: str
    fallback_level: FallbackLevel
    capabilities: tuple[str, ...]
