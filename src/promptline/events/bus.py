"""Event bus for promptline.

In-process pub/sub for decoupling the pipeline from its observers. The
bus is owned by the caller and handed to the pipeline; there is no global
registry and no retained history. Observers that want a record of a
request subscribe before running it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from promptline.events.types import ERROR_REPORTED
from promptline.recovery.errors import (
    RawError,
    UserFacingError,
    raw_error_from_exception,
    to_user_facing,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """One pipeline milestone for one request."""

    event_type: str
    request_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Any]


class EventBus:
    """Dispatches events to per-type and global handlers.

    Sync handlers run inline. Coroutine handlers are scheduled on the
    running loop and tracked until ``drain`` collects them.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._global_handlers: list[EventHandler] = []
        self._pending_tasks: set[asyncio.Task[Any]] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        self._global_handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: Event) -> None:
        """Deliver *event*; a failing handler is logged and never reaches the emitter."""
        for handler in [*self._global_handlers, *self._handlers.get(event.event_type, [])]:
            name = getattr(handler, "__name__", handler)
            if inspect.iscoroutinefunction(handler):
                try:
                    task = asyncio.get_running_loop().create_task(handler(event))
                except RuntimeError:
                    logger.debug("event_handler_skipped handler=%s reason=no_loop", name)
                    continue
                self._pending_tasks.add(task)
                task.add_done_callback(self._on_task_done)
                continue
            try:
                handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_failed handler=%s event=%s error=%s",
                    name, event.event_type, e,
                )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        pending = list(self._pending_tasks)
        if not pending:
            return
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning("event_drain_timeout pending=%d", len(not_done))

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("event_handler_failed error=%s", exc)


class ErrorReporter:
    """Classifies errors and publishes one ``error_reported`` per failure.

    Identical (cause, status, code) keys reported within ``dedupe_seconds``
    of each other are collapsed into the first report.
    """

    def __init__(
        self,
        bus: EventBus,
        dedupe_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._bus = bus
        self._dedupe_seconds = dedupe_seconds
        self._clock = clock
        self._last_seen: dict[tuple, float] = {}

    def report(
        self,
        error: BaseException | RawError,
        request_id: str = "",
    ) -> UserFacingError:
        raw = error if isinstance(error, RawError) else raw_error_from_exception(error)
        facing = to_user_facing(raw)
        key = (facing.cause, raw.http_status, raw.code)
        now = self._clock()
        last = self._last_seen.get(key)
        self._last_seen[key] = now
        if last is not None and now - last < self._dedupe_seconds:
            logger.debug("error_report_deduped cause=%s", facing.cause.value)
            return facing

        logger.warning(
            "error_reported cause=%s status=%s code=%s",
            facing.cause.value, raw.http_status, raw.code,
        )
        self._bus.emit(Event(
            event_type=ERROR_REPORTED,
            request_id=request_id,
            data={
                "cause": facing.cause.value,
                "message": facing.message,
                "http_status": raw.http_status,
                "code": raw.code,
            },
        ))
        return facing
