"""Streamed response decoding with idle-timeout and cancellation.

``read_text_stream`` owns one byte source for the lifetime of a request.
Each read waits on a single ``asyncio.wait`` over the pending read and the
caller's cancellation event, using the heartbeat as its tick. On every
tick the time since the last received byte is checked against the idle
ceiling. Whatever way the loop exits, the pending read and the
cancellation waiter are cancelled and the source is released.

Framing helpers split accumulated text into complete SSE events or
NDJSON lines and hand back the unconsumed tail for the next read.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from promptline.exceptions import StreamAbortedError, StreamTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_SECONDS = 10.0
DEFAULT_IDLE_TIMEOUT_SECONDS = 30.0

ChunkHandler = Callable[[str], Awaitable[None] | None]

_EOF = object()


@dataclass
class StreamSession:
    """Exclusive owner of one byte source."""

    reader: AsyncIterator[bytes]
    last_activity: float = field(default_factory=time.monotonic)
    cancelled: bool = False
    released: bool = False

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    async def read(self) -> Any:
        try:
            return await self.reader.__anext__()
        except StopAsyncIteration:
            return _EOF

    async def release(self) -> None:
        if self.released:
            return
        self.released = True
        aclose = getattr(self.reader, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.debug("stream_release_failed error=%s", e)


async def _settle(task: asyncio.Future | None) -> None:
    """Cancel *task* and wait until it has actually finished."""
    if task is None:
        return
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled():
        # Mark any exception as retrieved.
        task.exception()


async def read_text_stream(
    source: AsyncIterable[bytes],
    on_chunk: ChunkHandler,
    *,
    heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
    idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
    cancel_event: asyncio.Event | None = None,
    on_timeout: Callable[[], None] | None = None,
) -> str:
    """Decode *source* to text, calling *on_chunk* for each decoded piece.

    Returns the assembled text. Raises StreamAbortedError when
    *cancel_event* is set and StreamTimeoutError when no bytes arrive for
    *idle_timeout_seconds* (after calling *on_timeout* once).
    """
    session = StreamSession(reader=aiter(source))
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parts: list[str] = []
    cancel_wait: asyncio.Future | None = None
    read_task: asyncio.Future | None = None

    async def emit(text: str) -> None:
        parts.append(text)
        result = on_chunk(text)
        if inspect.isawaitable(result):
            await result

    if cancel_event is not None:
        cancel_wait = asyncio.ensure_future(cancel_event.wait())

    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                session.cancelled = True
                raise StreamAbortedError("Stream cancelled by caller")

            read_task = asyncio.ensure_future(session.read())
            while True:
                waiters = {read_task} if cancel_wait is None else {read_task, cancel_wait}
                done, _ = await asyncio.wait(
                    waiters,
                    timeout=heartbeat_seconds,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if read_task in done:
                    break
                if cancel_wait is not None and cancel_wait in done:
                    session.cancelled = True
                    raise StreamAbortedError("Stream cancelled by caller")
                if session.idle_for() > idle_timeout_seconds:
                    logger.warning(
                        "stream_idle_timeout idle_seconds=%.1f ceiling=%.1f",
                        session.idle_for(), idle_timeout_seconds,
                    )
                    await _settle(read_task)
                    read_task = None
                    if on_timeout is not None:
                        try:
                            on_timeout()
                        except Exception as e:
                            logger.warning("on_timeout callback failed: %s", e)
                    raise StreamTimeoutError(
                        f"No stream data for {idle_timeout_seconds:g}s"
                    )

            value = read_task.result()
            read_task = None
            if value is _EOF:
                break
            session.touch()
            if not value:
                continue
            text = decoder.decode(value)
            if text:
                await emit(text)

        tail = decoder.decode(b"", final=True)
        if tail:
            await emit(tail)
        return "".join(parts)
    finally:
        await _settle(read_task)
        await _settle(cancel_wait)
        await session.release()


def split_sse_events(buffer: str) -> tuple[list[str], str]:
    """Split *buffer* on blank lines into ``data:`` payloads.

    Returns the payload of every complete event (multi-line data joined
    with newlines) and the trailing partial event to prepend to the next
    read. Events without data lines are skipped.
    """
    events = buffer.replace("\r\n", "\n").split("\n\n")
    payloads: list[str] = []
    for event in events[:-1]:
        data_lines = [
            line[5:].removeprefix(" ")
            for line in event.split("\n")
            if line.startswith("data:")
        ]
        if data_lines:
            payloads.append("\n".join(data_lines))
    return payloads, events[-1]


def split_lines(buffer: str) -> tuple[list[str], str]:
    """Split *buffer* into complete non-empty lines plus the partial tail."""
    lines = buffer.replace("\r\n", "\n").split("\n")
    complete = [line for line in lines[:-1] if line.strip()]
    return complete, lines[-1]
