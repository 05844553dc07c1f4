"""Continuous transcript capture with automatic restart."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, Union

from .constants import (
    RESTART_BASE_MS,
    RESTART_CAP_MS,
    RESTART_STABILITY_S,
    TRANSCRIPT_CHANNEL_MAXSIZE,
)
from .errors import PermissionDeniedError, classify_exception
from .events import LISTENING_STARTED, LISTENING_STOPPED, EventBus
from .types import TranscriptEvent

LOGGER = logging.getLogger(__name__)


class SpeechCapture(Protocol):
    """A speech recognizer that yields events until its session ends.

    A session ending normally (silence timeout, engine recycle) or raising any
    error other than :class:`PermissionDeniedError` is treated as transient.
    """

    def open_session(self) -> AsyncIterator[TranscriptEvent]:  # pragma: no cover - interface only
        ...


class SourceState(enum.Enum):
    STOPPED = "stopped"
    LISTENING = "listening"
    RESTARTING = "restarting"
    DENIED = "denied"


class _End(enum.Enum):
    STOPPED = "stopped"


ChannelItem = Union[TranscriptEvent, PermissionDeniedError, _End]


class TranscriptSource:
    """Publish capture events on a bounded channel and keep the capture alive.

    Restart delays grow as ``base * 2**attempt`` capped at ``cap``; the
    attempt counter resets once a session has stayed up for
    ``stability_s``. Permission denial ends the source for good.
    """

    def __init__(
        self,
        capture: SpeechCapture,
        *,
        base_ms: int = RESTART_BASE_MS,
        cap_ms: int = RESTART_CAP_MS,
        stability_s: float = RESTART_STABILITY_S,
        maxsize: int = TRANSCRIPT_CHANNEL_MAXSIZE,
        events: EventBus | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capture = capture
        self.base_ms = base_ms
        self.cap_ms = cap_ms
        self.stability_s = stability_s
        self.events = events
        self._sleep = sleep
        self._clock = clock
        self.channel: "asyncio.Queue[ChannelItem]" = asyncio.Queue(maxsize=maxsize)
        self.state = SourceState.STOPPED
        self.restart_attempts = 0
        self.restart_delays: list[float] = []
        self._manual_stop = False
        self._task: asyncio.Task[None] | None = None

    # Public API ---------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self.running:
            assert self._task is not None
            return self._task
        if self.state is SourceState.DENIED:
            raise PermissionDeniedError("microphone permission was denied")
        self._manual_stop = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name="TranscriptSource")
        return self._task

    async def stop(self) -> None:
        """Stop immediately and suppress the next auto-restart."""

        self._manual_stop = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.state is not SourceState.DENIED:
            self._set_state(SourceState.STOPPED)
        self._publish_nowait(_End.STOPPED)

    def restart_delay_s(self, attempt: int) -> float:
        return min(self.base_ms * (2 ** attempt), self.cap_ms) / 1000.0

    async def events_iter(self) -> AsyncIterator[TranscriptEvent]:
        """Yield transcript events until stopped; raise on permission denial."""

        while True:
            item = await self.channel.get()
            if isinstance(item, PermissionDeniedError):
                raise item
            if item is _End.STOPPED:
                return
            yield item

    async def next_event(self, timeout: Optional[float] = None) -> Optional[TranscriptEvent]:
        """Return the next event, ``None`` on timeout or stop; raise on denial."""

        try:
            if timeout is None:
                item = await self.channel.get()
            else:
                item = await asyncio.wait_for(self.channel.get(), timeout=max(timeout, 0.0))
        except asyncio.TimeoutError:
            return None
        if isinstance(item, PermissionDeniedError):
            raise item
        if item is _End.STOPPED:
            return None
        return item

    # Internal helpers ---------------------------------------------------
    async def _run(self) -> None:
        while not self._manual_stop:
            session_started = self._clock()
            self._set_state(SourceState.LISTENING)
            try:
                async for event in self.capture.open_session():
                    if self._manual_stop:
                        return
                    if self._clock() - session_started >= self.stability_s:
                        self.restart_attempts = 0
                    await self.channel.put(event)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = classify_exception(exc)
                if isinstance(error, PermissionDeniedError):
                    LOGGER.error("Speech capture permission denied: %s", error)
                    self._set_state(SourceState.DENIED)
                    await self.channel.put(error)
                    return
                LOGGER.warning("Speech capture interrupted: %s", error)

            if self._manual_stop:
                return
            if self._clock() - session_started >= self.stability_s:
                self.restart_attempts = 0
            delay = self.restart_delay_s(self.restart_attempts)
            self.restart_attempts += 1
            self.restart_delays.append(delay)
            self._set_state(SourceState.RESTARTING)
            LOGGER.info("Restarting speech capture in %dms", int(delay * 1000))
            await self._sleep(delay)

    def _set_state(self, state: SourceState) -> None:
        if state is self.state:
            return
        previous = self.state
        self.state = state
        if self.events is None:
            return
        if state is SourceState.LISTENING and previous is SourceState.STOPPED:
            self.events.emit(LISTENING_STARTED)
        elif state in (SourceState.STOPPED, SourceState.DENIED):
            self.events.emit(LISTENING_STOPPED, reason=state.value)

    def _publish_nowait(self, item: ChannelItem) -> None:
        try:
            self.channel.put_nowait(item)
        except asyncio.QueueFull:
            LOGGER.debug("Transcript channel full while publishing %r", item)


__all__ = ["SpeechCapture", "SourceState", "TranscriptSource"]
