"""Priority queue that retries commands with exponential backoff."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

from .constants import MAX_RETRIES, QUEUE_MAX_HISTORY, RETRY_BASE_DELAY_S, RETRY_MAX_DELAY_S
from .errors import CommandError, classify_exception
from .events import COMMAND_FAILED, EventBus
from .types import Command, CommandResult, Priority, QueueItem

LOGGER = logging.getLogger(__name__)

ProcessFn = Callable[[Command], Awaitable[CommandResult]]
ResultCallback = Callable[[QueueItem, CommandResult], None]
DropCallback = Callable[[QueueItem, CommandError], None]


class RetryQueue:
    """Hold commands while connectivity is degraded and replay them in order.

    Ordering is ``(priority desc, arrival asc)``. A retried item is re-appended
    at the tail of its priority class. The processor signals a retriable
    failure by raising; any returned :class:`CommandResult` is final.
    Only the last ``max_history`` dropped items are kept for inspection.
    """

    def __init__(
        self,
        process: ProcessFn,
        *,
        base_delay_s: float = RETRY_BASE_DELAY_S,
        max_delay_s: float = RETRY_MAX_DELAY_S,
        max_retries: int = MAX_RETRIES,
        max_history: int = QUEUE_MAX_HISTORY,
        events: EventBus | None = None,
        on_result: Optional[ResultCallback] = None,
        on_drop: Optional[DropCallback] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._process = process
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.max_retries = max_retries
        self.events = events
        self.on_result = on_result
        self.on_drop = on_drop
        self._sleep = sleep
        self._clock = clock
        self._heap: list[tuple[int, int, QueueItem]] = []
        self._seq = itertools.count()
        self._processing = False
        self._online = True
        self._current: QueueItem | None = None
        self._drain_task: asyncio.Task[list[CommandResult]] | None = None
        self.dropped: deque[tuple[QueueItem, CommandError]] = deque(maxlen=max_history)

    # Public API ---------------------------------------------------------
    def __len__(self) -> int:
        return len(self._heap)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def is_paused(self) -> bool:
        return not self._online

    @property
    def has_backlog(self) -> bool:
        return bool(self._heap) or self._processing

    @property
    def head_priority(self) -> Optional[Priority]:
        """Highest priority among waiting and in-flight items."""

        candidates = [item.command.priority for _, _, item in self._heap[:1]]
        if self._current is not None:
            candidates.append(self._current.command.priority)
        return max(candidates) if candidates else None

    def pending(self) -> list[Command]:
        return [item.command for _, _, item in sorted(self._heap)]

    def enqueue(self, command: Command) -> QueueItem:
        item = QueueItem(command=command, enqueued_at=self._clock())
        self._push(item)
        LOGGER.info(
            "Queued command %r (priority=%s, backlog=%d)",
            command.normalized_text,
            command.priority.name,
            len(self._heap),
        )
        return item

    def backoff_delay(self, retry_count: int) -> float:
        return min(self.base_delay_s * (2 ** retry_count), self.max_delay_s)

    def set_online(self, online: bool) -> Optional[asyncio.Task[list[CommandResult]]]:
        was_online = self._online
        self._online = online
        if online and not was_online and self._heap:
            LOGGER.info("Network recovered, draining %d queued commands", len(self._heap))
            return self.schedule_drain()
        return None

    def schedule_drain(self) -> Optional[asyncio.Task[list[CommandResult]]]:
        if self._drain_task is not None and not self._drain_task.done():
            return self._drain_task
        if self._processing or not self._heap or not self._online:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        self._drain_task = loop.create_task(self.drain())
        return self._drain_task

    async def drain(self) -> list[CommandResult]:
        """Process the queue head-first until empty or paused.

        Only one drain pass runs at a time; a concurrent call returns
        immediately with no results.
        """

        if self._processing:
            return []
        self._processing = True
        completed: list[CommandResult] = []
        try:
            while self._heap and self._online:
                entry = heapq.heappop(self._heap)
                item = entry[2]
                self._current = item
                try:
                    result = await self._process(item.command)
                except Exception as exc:
                    error = classify_exception(exc)
                    if error.recoverable and not self._online:
                        heapq.heappush(self._heap, entry)
                        LOGGER.info("Offline, pausing queue with %d commands", len(self._heap))
                        break
                    if not error.recoverable or item.retry_count >= self.max_retries:
                        self._drop(item, error)
                        continue
                    delay = self.backoff_delay(item.retry_count)
                    item.retry_count += 1
                    self._push(item)
                    LOGGER.warning(
                        "Retry %d/%d for %r in %.2fs (%s)",
                        item.retry_count,
                        self.max_retries,
                        item.command.normalized_text,
                        delay,
                        error.kind.value,
                    )
                    await self._sleep(delay)
                    continue
                completed.append(result)
                if self.on_result is not None:
                    self.on_result(item, result)
        finally:
            self._processing = False
            self._current = None
        return completed

    # Internal helpers ---------------------------------------------------
    def _push(self, item: QueueItem) -> None:
        heapq.heappush(self._heap, (-int(item.command.priority), next(self._seq), item))

    def _drop(self, item: QueueItem, error: CommandError) -> None:
        LOGGER.error(
            "Dropping command %r after %d retries: %s",
            item.command.normalized_text,
            item.retry_count,
            error,
        )
        self.dropped.append((item, error))
        if self.events is not None:
            self.events.emit(
                COMMAND_FAILED,
                command=item.command.raw_text,
                reason="retry_exhausted" if error.recoverable else "non_recoverable",
                error_type=error.kind.value,
                retry_count=item.retry_count,
            )
        if self.on_drop is not None:
            self.on_drop(item, error)


__all__ = ["RetryQueue"]
