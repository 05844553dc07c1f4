"""Intent representation for the voice command pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .types import ActionKind


@dataclass(frozen=True)
class MirandaParams:
    language: str = "english"


@dataclass(frozen=True)
class StatuteParams:
    statute: str


@dataclass(frozen=True)
class ThreatParams:
    description: str


@dataclass(frozen=True)
class TacticalParams:
    query: str


@dataclass(frozen=True)
class GeneralParams:
    query: str


IntentParams = Union[MirandaParams, StatuteParams, ThreatParams, TacticalParams, GeneralParams]

PARAMS_BY_ACTION: dict[ActionKind, type] = {
    ActionKind.MIRANDA: MirandaParams,
    ActionKind.STATUTE: StatuteParams,
    ActionKind.THREAT: ThreatParams,
    ActionKind.TACTICAL: TacticalParams,
    ActionKind.GENERAL_KNOWLEDGE: GeneralParams,
}


@dataclass(frozen=True)
class ResolvedIntent:
    """Intent resolved by the local matcher or the remote interpreter.

    Attributes:
        action: Which handler the executor dispatches to.
        params: Payload class specific to ``action``.
        text: Normalized command text the intent was resolved from.
        result_text: Answer already produced by the resolver, if any.
        source: ``local``, ``remote`` or ``cache``.
        notes: Short notes for debug and telemetry.
    """

    action: ActionKind
    params: IntentParams
    text: str
    result_text: str | None = None
    source: str = "local"
    notes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        expected = PARAMS_BY_ACTION.get(self.action)
        if expected is not None and not isinstance(self.params, expected):
            raise TypeError(
                f"{self.action.value} intent requires {expected.__name__}, got {type(self.params).__name__}"
            )


def general_intent(text: str, *, result_text: str | None = None, source: str = "remote") -> ResolvedIntent:
    return ResolvedIntent(
        action=ActionKind.GENERAL_KNOWLEDGE,
        params=GeneralParams(query=text),
        text=text,
        result_text=result_text,
        source=source,
    )


def params_to_dict(params: IntentParams) -> dict[str, str]:
    if isinstance(params, MirandaParams):
        return {"language": params.language}
    if isinstance(params, StatuteParams):
        return {"statute": params.statute}
    if isinstance(params, ThreatParams):
        return {"description": params.description}
    return {"query": params.query}
