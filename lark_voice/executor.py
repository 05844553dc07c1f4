"""Dispatch resolved intents to domain handlers."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .errors import CommandValidationError, ReferenceNotFoundError, classify_exception
from .handlers import DomainHandler, default_handlers
from .intent import MirandaParams, ResolvedIntent, StatuteParams, params_to_dict
from .types import ActionKind, Command, CommandContext, CommandResult

LOGGER = logging.getLogger(__name__)

DISPATCHABLE_ACTIONS = frozenset(kind for kind in ActionKind if kind is not ActionKind.UNKNOWN)


class CommandExecutor:
    """Hand a :class:`ResolvedIntent` to the handler for its action.

    The handler table must cover every dispatchable :class:`ActionKind`; a
    missing entry is a construction error rather than a runtime surprise.
    """

    def __init__(self, handlers: Mapping[ActionKind, DomainHandler] | None = None) -> None:
        table = dict(default_handlers())
        if handlers:
            table.update(handlers)
        missing = DISPATCHABLE_ACTIONS - set(table)
        if missing:
            names = ", ".join(sorted(kind.value for kind in missing))
            raise ValueError(f"No handler registered for: {names}")
        self.handlers = table

    async def execute(
        self,
        intent: ResolvedIntent,
        context: CommandContext,
        command: Optional[Command] = None,
    ) -> CommandResult:
        """Run the handler and return its result.

        Remote intents that already carry an answer are not re-run through
        the offline handlers. A miss in the offline reference becomes an
        unsuccessful ``fallback`` result. Other non-Miranda handler failures
        propagate as typed errors. Miranda failures return a degraded success
        flagged ``fallback`` so the UI can still open the right language tab.
        """

        if intent.action not in self.handlers:
            raise CommandValidationError(f"cannot execute action {intent.action.value}")

        metadata: dict[str, object] = {
            **params_to_dict(intent.params),
            "source": intent.source,
        }
        if intent.notes:
            metadata["notes"] = list(intent.notes)

        try:
            if self._answers_itself(intent):
                response = intent.result_text
            else:
                response = await self.handlers[intent.action].handle(intent.params, context)
        except ReferenceNotFoundError as exc:
            LOGGER.info("No offline reference for %r: %s", intent.text, exc)
            result = CommandResult(
                command=intent.text,
                response=exc.user_message,
                success=False,
                action=intent.action,
                module=intent.source,
                metadata={**metadata, **exc.to_metadata(), "fallback": True},
            )
        except Exception as exc:
            if intent.action is not ActionKind.MIRANDA:
                raise classify_exception(exc) from exc
            result = self._miranda_fallback(intent, metadata, exc)
        else:
            result = CommandResult(
                command=intent.text,
                response=response,
                success=True,
                action=intent.action,
                module=intent.source,
                metadata=metadata,
            )

        if command is not None:
            self.update_context(context, command, result, intent)
        return result

    @staticmethod
    def _answers_itself(intent: ResolvedIntent) -> bool:
        # Miranda text is always read from the reference.
        if not intent.result_text or intent.action is ActionKind.MIRANDA:
            return False
        return intent.action is ActionKind.GENERAL_KNOWLEDGE or intent.source == "remote"

    @staticmethod
    def _miranda_fallback(
        intent: ResolvedIntent, metadata: dict[str, object], exc: Exception
    ) -> CommandResult:
        language = intent.params.language if isinstance(intent.params, MirandaParams) else "english"
        LOGGER.warning("Miranda handler failed, returning fallback in %s: %s", language, exc)
        return CommandResult(
            command=intent.text,
            response=f"Reading Miranda rights in {language}. Switching to Miranda tab.",
            success=True,
            action=ActionKind.MIRANDA,
            module=intent.source,
            metadata={**metadata, "language": language, "fallback": True, "error": str(exc)},
        )

    @staticmethod
    def update_context(
        context: CommandContext,
        command: Command,
        result: CommandResult,
        intent: ResolvedIntent | None = None,
    ) -> None:
        context.previous_command = command
        context.previous_result = result
        context.variables["last_action"] = result.action.value
        if intent is not None and isinstance(intent.params, StatuteParams):
            context.variables["last_statute"] = intent.params.statute
        if result.action is ActionKind.MIRANDA and "language" in result.metadata:
            context.variables["language_preference"] = result.metadata["language"]
        if result.action is ActionKind.THREAT:
            context.variables["last_threat_assessment"] = result.response


__all__ = ["CommandExecutor", "DISPATCHABLE_ACTIONS"]
