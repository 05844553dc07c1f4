"""Service health tracking and degradation-level decisions."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable

from .constants import (
    FAILURE_THRESHOLD,
    MAX_CONSECUTIVE_ERRORS,
    NETWORK_SERVICE,
    PRIMARY_INTERPRETER,
    SECONDARY_INTERPRETER,
    SPEECH_SERVICE,
)
from .events import DEGRADATION_CHANGED, EventBus
from .types import (
    DegradationLevel,
    FallbackLevel,
    FallbackStrategy,
    Priority,
    ServiceHealthRecord,
    ServiceRecommendation,
)

LOGGER = logging.getLogger(__name__)

FALLBACK_STRATEGIES: dict[FallbackLevel, FallbackStrategy] = {
    FallbackLevel.PRIMARY: FallbackStrategy(
        level=FallbackLevel.PRIMARY,
        description="Full remote interpretation with the primary model",
        capabilities=("Multi-model routing", "Full feature set", "Real-time analytics"),
        response_time_ms=500,
        reliability=0.95,
    ),
    FallbackLevel.SECONDARY: FallbackStrategy(
        level=FallbackLevel.SECONDARY,
        description="Reduced model options with basic orchestration",
        capabilities=("Limited model routing", "Core features only", "Reduced analytics"),
        response_time_ms=1000,
        reliability=0.85,
    ),
    FallbackLevel.OFFLINE: FallbackStrategy(
        level=FallbackLevel.OFFLINE,
        description="Local processing with cached responses",
        capabilities=("Cached legal information", "Local command patterns", "Emergency protocols"),
        response_time_ms=200,
        reliability=0.70,
    ),
    FallbackLevel.EMERGENCY: FallbackStrategy(
        level=FallbackLevel.EMERGENCY,
        description="Critical functions only with maximum reliability",
        capabilities=(
            "Emergency commands",
            "Officer safety protocols",
            "Basic communication",
            "Offline Miranda rights",
        ),
        response_time_ms=100,
        reliability=0.99,
    ),
}

_SERVICE_FOR_LEVEL = {
    FallbackLevel.PRIMARY: "orchestrator",
    FallbackLevel.SECONDARY: "orchestrator",
    FallbackLevel.OFFLINE: "offline",
    FallbackLevel.EMERGENCY: "emergency",
}


def _recommend(level: FallbackLevel) -> ServiceRecommendation:
    return ServiceRecommendation(
        service=_SERVICE_FOR_LEVEL[level],
        fallback_level=level,
        capabilities=FALLBACK_STRATEGIES[level].capabilities,
    )


class DegradationManager:
    """Aggregate per-service health into a :class:`DegradationLevel`.

    Interpreter services are listed highest priority first. Every service
    other than the network counts as a remote service for the "all remote
    services failing" rule.
    """

    def __init__(
        self,
        *,
        interpreter_services: Iterable[str] = (PRIMARY_INTERPRETER, SECONDARY_INTERPRETER),
        extra_services: Iterable[str] = (SPEECH_SERVICE,),
        failure_threshold: int = FAILURE_THRESHOLD,
        max_consecutive_errors: int = MAX_CONSECUTIVE_ERRORS,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interpreter_services = tuple(interpreter_services)
        if not self.interpreter_services:
            raise ValueError("At least one interpreter service is required")
        self.failure_threshold = max(1, failure_threshold)
        self.max_consecutive_errors = max(1, max_consecutive_errors)
        self.events = events
        self._clock = clock
        self._records: dict[str, ServiceHealthRecord] = {}
        for name in (*self.interpreter_services, *extra_services, NETWORK_SERVICE):
            self._records[name] = ServiceHealthRecord(service_name=name)
        self._network_online = True
        self._emergency_override = False
        self._command_error_streak = 0
        self._level = DegradationLevel.NORMAL

    # Health inputs ------------------------------------------------------
    def record_outcome(self, service_name: str, success: bool) -> DegradationLevel:
        record = self._records.setdefault(service_name, ServiceHealthRecord(service_name=service_name))
        now = self._clock()
        if success:
            record.consecutive_failures = 0
            record.last_success_at = now
        else:
            record.consecutive_failures += 1
            record.last_failure_at = now
        return self._reevaluate()

    def set_network_online(self, online: bool) -> DegradationLevel:
        if online != self._network_online:
            LOGGER.info("Network status changed: %s", "online" if online else "offline")
        self._network_online = online
        record = self._records[NETWORK_SERVICE]
        now = self._clock()
        if online:
            record.consecutive_failures = 0
            record.last_success_at = now
        else:
            record.consecutive_failures = max(1, record.consecutive_failures)
            record.last_failure_at = now
        return self._reevaluate()

    def force_emergency_mode(self, enabled: bool) -> DegradationLevel:
        LOGGER.warning("Emergency mode %s manually", "enabled" if enabled else "disabled")
        self._emergency_override = enabled
        return self._reevaluate()

    def record_command_outcome(self, success: bool) -> bool:
        """Track the cross-command error streak.

        Returns True once the streak reaches ``max_consecutive_errors``, which
        is the point where callers should recommend stepping down a level.
        """

        if success:
            self._command_error_streak = 0
            return False
        self._command_error_streak += 1
        return self._command_error_streak >= self.max_consecutive_errors

    # Observations -------------------------------------------------------
    @property
    def network_online(self) -> bool:
        return self._network_online

    @property
    def emergency_override(self) -> bool:
        return self._emergency_override

    @property
    def command_error_streak(self) -> int:
        return self._command_error_streak

    def is_failing(self, service_name: str) -> bool:
        record = self._records.get(service_name)
        return record is not None and record.consecutive_failures >= self.failure_threshold

    def compute_level(self) -> DegradationLevel:
        remote = [name for name in self._records if name != NETWORK_SERVICE]
        if self._emergency_override or all(self.is_failing(name) for name in remote):
            return DegradationLevel.EMERGENCY_ONLY
        level = DegradationLevel.NORMAL
        if self.is_failing(self.interpreter_services[0]):
            level = max(level, DegradationLevel.DEGRADED)
        if not self._network_online:
            level = max(level, DegradationLevel.LIMITED)
        return level

    def get_degradation_level(self) -> DegradationLevel:
        return self._level

    def available_interpreters(self) -> list[str]:
        return [name for name in self.interpreter_services if not self.is_failing(name)]

    def service_health(self) -> dict[str, ServiceHealthRecord]:
        return {
            name: ServiceHealthRecord(
                service_name=record.service_name,
                consecutive_failures=record.consecutive_failures,
                last_failure_at=record.last_failure_at,
                last_success_at=record.last_success_at,
            )
            for name, record in self._records.items()
        }

    def recommend_service(self, task_type: str, priority: Priority | str) -> ServiceRecommendation:
        """Pick a service tier from in-memory health only (no I/O)."""

        if isinstance(priority, str):
            priority = Priority[priority.upper()]
        level = self._level

        if task_type == "emergency" or level is DegradationLevel.EMERGENCY_ONLY:
            return _recommend(FallbackLevel.EMERGENCY)
        if level is DegradationLevel.LIMITED or not self._network_online:
            return _recommend(FallbackLevel.OFFLINE)
        available = self.available_interpreters()
        if level is DegradationLevel.NORMAL and available:
            return _recommend(FallbackLevel.PRIMARY)
        if available:
            return _recommend(FallbackLevel.SECONDARY)
        if priority is Priority.HIGH:
            return _recommend(FallbackLevel.EMERGENCY)
        return _recommend(FallbackLevel.OFFLINE)

    # Internal helpers ---------------------------------------------------
    def _reevaluate(self) -> DegradationLevel:
        new_level = self.compute_level()
        if new_level is not self._level:
            previous = self._level
            self._level = new_level
            LOGGER.warning(
                "Degradation level changed: %s -> %s", previous.name, new_level.name
            )
            if self.events is not None:
                self.events.emit(
                    DEGRADATION_CHANGED, previous=previous.name, level=new_level.name
                )
        return self._level


__all__ = ["DegradationManager", "FALLBACK_STRATEGIES"]
