"""Prompt builder for the remote interpreter.

Turns a command and its chain context into the ``{system_prompt, user_text}``
pair the provider receives. The builder stays deterministic and exposes debug
metadata for inspection.
"""

from __future__ import annotations

from dataclasses import dataclass

from .constants import ACTION_HINTS, BASE_SYSTEM_INSTRUCTION, OUTPUT_CONTRACT
from .types import CommandContext


@dataclass(frozen=True)
class BuiltPrompt:
    """Structured prompt payload."""

    system: str
    user: str
    debug: dict[str, object]

    @property
    def as_text(self) -> str:
        return f"{self.system}\n\n{self.user}"


def summarize_context(context: CommandContext | None, max_chars: int = 240) -> list[str]:
    """Return short context lines for chained sub-commands."""

    if context is None:
        return []
    lines: list[str] = []
    if context.previous_command is not None:
        lines.append(f"Previous command: {context.previous_command.raw_text}")
    if context.previous_result is not None:
        response = context.previous_result.response
        if len(response) > max_chars:
            response = response[:max_chars] + "…"
        lines.append(f"Previous result ({context.previous_result.action.value}): {response}")
    for name in sorted(context.variables):
        lines.append(f"{name}: {context.variables[name]}")
    return lines


def build_user_payload(text: str, context: CommandContext | None = None) -> str:
    lines = [f"Officer command: {text.strip() or 'nothing'}"]
    context_lines = summarize_context(context)
    if context_lines:
        lines.append("Context from earlier steps:")
        lines.extend(f"- {line}" for line in context_lines)
    return "\n".join(lines)


def build_prompt(text: str, context: CommandContext | None = None) -> BuiltPrompt:
    """Construct the full prompt for the interpreter provider."""

    hints = "\n".join(ACTION_HINTS.values())
    system = f"{BASE_SYSTEM_INSTRUCTION}\n{OUTPUT_CONTRACT}\n{hints}"
    user = build_user_payload(text, context)
    debug = {
        "command_chars": len(text),
        "context_lines": len(summarize_context(context)),
        "chained": bool(context and context.previous_command is not None),
    }
    return BuiltPrompt(system=system, user=user, debug=debug)


__all__ = ["BuiltPrompt", "build_prompt", "build_user_payload", "summarize_context"]
