"""
Server-Sent Events framing.

``sse_events`` drives a blocking increment iterator from a worker thread and
turns it into SSE frames. While the next increment is pending, a heartbeat
comment goes out every ``heartbeat_interval`` seconds so proxies keep the
connection open. When the client goes away Starlette closes this generator;
the pending read is cancelled and no more heartbeats are sent. The worker
thread itself finishes its current read in the background.
"""

import asyncio
import logging
from typing import AsyncIterator, Iterator

from starlette.concurrency import iterate_in_threadpool

logger = logging.getLogger(__name__)

END_SENTINEL = "[END]"
HEARTBEAT = ": ping\n\n"
STREAM_ERROR_MESSAGE = "⚠️ Error inesperado generando la respuesta."


def format_event(payload: str) -> str:
    """One SSE event; multi-line payloads become several ``data:`` lines."""
    lines = payload.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "".join(f"data: {line}\n" for line in lines) + "\n"


async def sse_events(increments: Iterator[str], heartbeat_interval: float = 15.0) -> AsyncIterator[str]:
    iterator = iterate_in_threadpool(increments)
    pending = None
    try:
        while True:
            if pending is None:
                pending = asyncio.ensure_future(iterator.__anext__())

            done, _ = await asyncio.wait({pending}, timeout=heartbeat_interval)
            if not done:
                yield HEARTBEAT
                continue

            task, pending = pending, None
            try:
                text = task.result()
            except StopAsyncIteration:
                break
            except Exception:
                logger.exception("❌ Increment source failed mid-stream")
                yield format_event(STREAM_ERROR_MESSAGE)
                break

            yield format_event(text)

        yield format_event(END_SENTINEL)
    finally:
        if pending is not None:
            pending.cancel()


async def sse_single(text: str) -> AsyncIterator[str]:
    """A ready reply delivered over the same SSE contract."""
    yield format_event(text)
    yield format_event(END_SENTINEL)
