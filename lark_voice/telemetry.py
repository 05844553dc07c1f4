"""Per-command outcome and latency recording."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from .cache import PersistentStore
from .constants import (
    DEFAULT_LOG_MAX_BYTES,
    TELEMETRY_ALERT_MIN_SAMPLES,
    TELEMETRY_ALERT_SUCCESS_RATE,
    TELEMETRY_MAX_HISTORY,
    TELEMETRY_WINDOW_S,
)
from .events import TELEMETRY_ALERT, EventBus
from .logging_utils import append_event, build_log_event
from .types import Command, CommandResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetryRecord:
    timestamp: float
    command: str
    action: str
    module: str
    model: str | None
    success: bool
    latency_ms: float
    error_kind: str | None
    cache_hit: bool
    fallback: bool


@dataclass
class TelemetryStats:
    total: int = 0
    success_rate: float = 0.0
    average_latency_ms: float = 0.0
    by_action: dict[str, int] = field(default_factory=dict)
    by_module: dict[str, int] = field(default_factory=dict)
    by_model: dict[str, int] = field(default_factory=dict)
    by_error_kind: dict[str, int] = field(default_factory=dict)
    common_failures: list[tuple[str, int]] = field(default_factory=list)
    cache_hits: int = 0
    performance_over_time: list[dict[str, float]] = field(default_factory=list)


class TelemetryRecorder:
    """Append-only command telemetry.

    ``record`` is synchronous and cheap: it appends to the in-memory history
    and hands persistence to a background task, so callers never wait on it
    before returning a result.
    """

    def __init__(
        self,
        *,
        store: PersistentStore | None = None,
        event_log_path: str | None = None,
        log_max_bytes: int = DEFAULT_LOG_MAX_BYTES,
        events: EventBus | None = None,
        max_history: int = TELEMETRY_MAX_HISTORY,
        alert_success_rate: float = TELEMETRY_ALERT_SUCCESS_RATE,
        alert_min_samples: int = TELEMETRY_ALERT_MIN_SAMPLES,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.event_log_path = event_log_path
        self.log_max_bytes = log_max_bytes
        self.events = events
        self.alert_success_rate = alert_success_rate
        self.alert_min_samples = alert_min_samples
        self._clock = clock
        self._records: deque[TelemetryRecord] = deque(maxlen=max_history)
        self._pending: set[asyncio.Task[None]] = set()
        self._alerting = False

    def __len__(self) -> int:
        return len(self._records)

    def record(
        self,
        command: Optional[Command],
        result: CommandResult,
        latency_ms: float,
        *,
        error_kind: str | None = None,
    ) -> TelemetryRecord:
        cache_hit = bool(result.metadata.get("cache_hit"))
        model = result.metadata.get("model")
        entry = TelemetryRecord(
            timestamp=self._clock(),
            command=result.command,
            action=result.action.value,
            module=result.module,
            model=str(model) if model else None,
            success=result.success,
            latency_ms=float(latency_ms),
            error_kind=error_kind or result.metadata.get("errorType"),
            cache_hit=cache_hit,
            fallback=bool(result.metadata.get("fallback")),
        )
        self._records.append(entry)
        event = build_log_event(
            command=command,
            result=result,
            latency_ms=latency_ms,
            error_kind=entry.error_kind,
            cache_hit=cache_hit,
            model=entry.model,
        )
        event["ts"] = entry.timestamp
        self._persist_later(event)
        self._check_alert()
        return entry

    def stats(self, window_s: float = TELEMETRY_WINDOW_S, *, buckets: int = 10) -> TelemetryStats:
        now = self._clock()
        recent = [r for r in self._records if now - r.timestamp < window_s]
        if not recent:
            return TelemetryStats()

        successes = sum(1 for r in recent if r.success)
        failures = Counter(r.command for r in recent if not r.success)
        stats = TelemetryStats(
            total=len(recent),
            success_rate=successes / len(recent),
            average_latency_ms=sum(r.latency_ms for r in recent) / len(recent),
            by_action=dict(Counter(r.action for r in recent)),
            by_module=dict(Counter(r.module for r in recent)),
            by_model=dict(Counter(r.model for r in recent if r.model)),
            by_error_kind=dict(Counter(r.error_kind for r in recent if r.error_kind)),
            common_failures=failures.most_common(5),
            cache_hits=sum(1 for r in recent if r.cache_hit),
        )

        buckets = max(1, buckets)
        slot = window_s / buckets
        start = now - window_s
        slots: list[list[TelemetryRecord]] = [[] for _ in range(buckets)]
        for r in recent:
            slots[min(int((r.timestamp - start) / slot), buckets - 1)].append(r)
        for idx, in_slot in enumerate(slots):
            stats.performance_over_time.append(
                {
                    "timestamp": start + idx * slot,
                    "count": float(len(in_slot)),
                    "success_rate": (sum(1 for r in in_slot if r.success) / len(in_slot)) if in_slot else 0.0,
                    "latency_ms": (sum(r.latency_ms for r in in_slot) / len(in_slot)) if in_slot else 0.0,
                }
            )
        return stats

    def restore(self, window_s: float = TELEMETRY_WINDOW_S) -> int:
        """Reload records persisted by earlier runs so stats survive a restart.

        Returns the number of records loaded.
        """

        if self.store is None:
            return 0
        rows = self.store.rows_since("analytics", self._clock() - window_s)
        for row in rows:
            self._records.append(
                TelemetryRecord(
                    timestamp=float(row["ts"]),
                    command=row["command"],
                    action=row["action"],
                    module=row["module"],
                    model=row.get("model"),
                    success=bool(row["success"]),
                    latency_ms=float(row["latency_ms"]),
                    error_kind=row.get("error_kind"),
                    cache_hit=bool(row.get("cache_hit")),
                    fallback=bool(row.get("fallback")),
                )
            )
        if rows:
            LOGGER.info("Restored %d telemetry records", len(rows))
        return len(rows)

    def suggest(self, partial: str, limit: int = 5) -> list[str]:
        """Return previously successful commands containing ``partial``, most frequent first."""

        needle = partial.lower().strip()
        counts = Counter(
            r.command for r in self._records if r.success and needle and needle in r.command.lower()
        )
        return [command for command, _ in counts.most_common(limit)]

    async def flush(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # Internal helpers ---------------------------------------------------
    def _write(self, event: dict) -> None:
        if self.store is not None:
            self.store.write("analytics", uuid.uuid4().hex, event, event["ts"], "analytics")
        if self.event_log_path:
            append_event(self.event_log_path, event, max_bytes=self.log_max_bytes)

    def _persist_later(self, event: dict) -> None:
        if self.store is None and not self.event_log_path:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._safe_write(event)
            return
        task = loop.create_task(asyncio.to_thread(self._safe_write, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _safe_write(self, event: dict) -> None:
        try:
            self._write(event)
        except Exception:
            LOGGER.exception("Failed to persist telemetry event")

    def _check_alert(self) -> None:
        recent = list(self._records)[-max(self.alert_min_samples, 1) * 4 :]
        if len(recent) < self.alert_min_samples:
            return
        rate = sum(1 for r in recent if r.success) / len(recent)
        below = rate < self.alert_success_rate
        if below and not self._alerting:
            LOGGER.warning("Command success rate dropped to %.0f%%", rate * 100)
            if self.events is not None:
                self.events.emit(TELEMETRY_ALERT, success_rate=rate, samples=len(recent))
        self._alerting = below


__all__ = ["TelemetryRecorder", "TelemetryRecord", "TelemetryStats"]
