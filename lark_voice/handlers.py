"""Default domain handlers that work without the network.

Production deployments register their own handlers with the executor; these
cover the offline reference data (Miranda texts, common statutes, threat
advisories) so the emergency tier always has something to say.
"""

from __future__ import annotations

import re
from typing import Protocol, TypeVar

from .constants import (
    COMMON_STATUTES,
    DEFAULT_THREAT_ADVISORY,
    MIRANDA_RIGHTS,
    THREAT_ADVISORIES,
)
from .errors import CommandValidationError, ReferenceNotFoundError
from .intent import (
    GeneralParams,
    IntentParams,
    MirandaParams,
    StatuteParams,
    TacticalParams,
    ThreatParams,
)
from .types import ActionKind, CommandContext

_P = TypeVar("_P", bound=IntentParams)


class DomainHandler(Protocol):
    async def handle(self, params: IntentParams, context: CommandContext) -> str:  # pragma: no cover - interface only
        ...


def _expect(params: IntentParams, expected: type[_P]) -> _P:
    if not isinstance(params, expected):
        raise CommandValidationError(
            f"expected {expected.__name__}, got {type(params).__name__}"
        )
    return params


class MirandaHandler:
    async def handle(self, params: IntentParams, context: CommandContext) -> str:
        params = _expect(params, MirandaParams)
        text = MIRANDA_RIGHTS.get(params.language)
        if text is None:
            raise CommandValidationError(f"unsupported Miranda language: {params.language}")
        return text


class StatuteHandler:
    def __init__(self, statutes: dict[str, str] | None = None) -> None:
        self.statutes = dict(statutes or COMMON_STATUTES)

    async def handle(self, params: IntentParams, context: CommandContext) -> str:
        params = _expect(params, StatuteParams)
        description = self.statutes.get(params.statute)
        if description is None:
            raise ReferenceNotFoundError(
                f"Statute {params.statute} is not in the offline reference. "
                "A full lookup needs a network connection."
            )
        return f"RS {params.statute}: {description}"


class ThreatHandler:
    def __init__(self) -> None:
        self._advisories = tuple(
            (re.compile(pattern, re.IGNORECASE), advisory) for pattern, advisory in THREAT_ADVISORIES
        )

    async def handle(self, params: IntentParams, context: CommandContext) -> str:
        params = _expect(params, ThreatParams)
        haystack = params.description
        previous = context.previous_result
        if previous is not None:
            haystack = f"{haystack} {previous.response}"
        for pattern, advisory in self._advisories:
            if pattern.search(haystack):
                return advisory
        return DEFAULT_THREAT_ADVISORY


class TacticalHandler:
    async def handle(self, params: IntentParams, context: CommandContext) -> str:
        params = _expect(params, TacticalParams)
        parts = ["Tactical summary:"]
        statute = context.variables.get("last_statute")
        if statute:
            parts.append(f"last statute referenced RS {statute}.")
        threat = context.variables.get("last_threat_assessment")
        if threat:
            parts.append(f"last threat assessment: {threat}")
        if len(parts) == 1:
            parts.append("no prior context. Establish perimeter and report status to dispatch.")
        return " ".join(parts)


class GeneralKnowledgeHandler:
    async def handle(self, params: IntentParams, context: CommandContext) -> str:
        params = _expect(params, GeneralParams)
        raise ReferenceNotFoundError(f"I don't have an offline answer for: {params.query}")


def default_handlers() -> dict[ActionKind, DomainHandler]:
    return {
        ActionKind.MIRANDA: MirandaHandler(),
        ActionKind.STATUTE: StatuteHandler(),
        ActionKind.THREAT: ThreatHandler(),
        ActionKind.TACTICAL: TacticalHandler(),
        ActionKind.GENERAL_KNOWLEDGE: GeneralKnowledgeHandler(),
    }


__all__ = [
    "DomainHandler",
    "GeneralKnowledgeHandler",
    "MirandaHandler",
    "StatuteHandler",
    "TacticalHandler",
    "ThreatHandler",
    "default_handlers",
]
