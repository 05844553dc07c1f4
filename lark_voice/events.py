"""Named signals published to the UI layer.

Delivery is fire-and-forget: subscribers run synchronously in emit order and a
failing subscriber is logged without affecting the others or the emitter.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)

WAKE_WORD_DETECTED = "wake_word_detected"
LISTENING_STARTED = "listening_started"
LISTENING_STOPPED = "listening_stopped"
COMMAND_DETECTED = "command_detected"
DEGRADATION_CHANGED = "degradation_changed"
COMMAND_FAILED = "command_failed"
TELEMETRY_ALERT = "telemetry_alert"

ALL_SIGNALS = (
    WAKE_WORD_DETECTED,
    LISTENING_STARTED,
    LISTENING_STOPPED,
    COMMAND_DETECTED,
    DEGRADATION_CHANGED,
    COMMAND_FAILED,
    TELEMETRY_ALERT,
)

Subscriber = Callable[[str, dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, name: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``name`` (``*`` receives every signal).

        Returns a function that removes the subscription.
        """

        if name != "*" and name not in ALL_SIGNALS:
            raise ValueError(f"Unknown signal: {name}")
        self._subscribers[name].append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers[name]:
                self._subscribers[name].remove(callback)

        return _unsubscribe

    def emit(self, name: str, **payload: Any) -> None:
        for callback in list(self._subscribers.get(name, ())) + list(self._subscribers.get("*", ())):
            try:
                callback(name, payload)
            except Exception:
                LOGGER.exception("Subscriber for %s failed", name)


__all__ = [
    "ALL_SIGNALS",
    "COMMAND_DETECTED",
    "COMMAND_FAILED",
    "DEGRADATION_CHANGED",
    "EventBus",
    "LISTENING_STARTED",
    "LISTENING_STOPPED",
    "TELEMETRY_ALERT",
    "WAKE_WORD_DETECTED",
]
