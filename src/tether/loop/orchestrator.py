"""Route loop events to a consumer, directly or through a bounded channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Protocol

from tether.events import EndData, ErrorData, LoopEvent, ResponseData
from tether.log_utils import log_event

logger = logging.getLogger(__name__)

_DONE = object()


class LoopConsumer(Protocol):
    async def handle_response(self, data: ResponseData) -> Any: ...

    async def handle_error(self, data: ErrorData) -> Any: ...

    async def handle_end(self, data: EndData) -> Any: ...


async def consume_stream(consumer: LoopConsumer, events: AsyncIterator[LoopEvent]) -> None:
    """Feed every event to the matching consumer method, in order.

    Returns once ``events`` is exhausted. Consumer exceptions propagate and
    stop consumption.
    """

    async for event in events:
        if event.type == "response":
            await consumer.handle_response(event.data)  # type: ignore[arg-type]
        elif event.type == "error":
            await consumer.handle_error(event.data)  # type: ignore[arg-type]
        elif event.type == "end":
            await consumer.handle_end(event.data)  # type: ignore[arg-type]
        else:
            log_event(logger, "loop.event.unknown", level=logging.WARNING, type=event.type)


async def stream_through_channel(source: AsyncIterator[LoopEvent], maxsize: int = 64) -> AsyncIterator[LoopEvent]:
    """Drain ``source`` in a producer task and yield its events from a queue.

    The queue is bounded so a slow consumer applies backpressure to the
    producer. Closing or cancelling the consumer cancels the producer; an
    exception raised by the source is re-raised to the consumer after the
    events queued before it.
    """

    queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)

    async def _produce() -> None:
        try:
            async for event in source:
                await queue.put(event)
        except Exception as exc:  # noqa: BLE001 - handed to the consumer below
            await queue.put(exc)
            return
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
        await queue.put(_DONE)

    producer = asyncio.create_task(_produce())
    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            if isinstance(item, Exception):
                raise item
            yield item
    finally:
        if not producer.done():
            producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)


__all__ = ["LoopConsumer", "consume_stream", "stream_through_channel"]
