"""Fire-and-forget publication of side-channel events.

Plan updates, terminal snippets, file changes and tool-call results are
published to subscribers owned by the embedding application. Publishing
never blocks the loop: coroutine subscribers are scheduled as tasks, and a
failing subscriber is logged and otherwise ignored.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Literal, Set

from tether.log_utils import log_event

logger = logging.getLogger(__name__)

Topic = Literal["plan", "terminal", "file_change", "tool_result", "model_status"]
Subscriber = Callable[[Topic, Dict[str, Any]], Any]


class EventSink:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._tasks: Set[asyncio.Task[Any]] = set()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, topic: Topic, **payload: Any) -> None:
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(topic, payload)
            except Exception as exc:  # noqa: BLE001 - subscribers must not break the loop
                log_event(logger, "sink.subscriber.error", level=logging.WARNING, topic=topic, error=str(exc))
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event(logger, "sink.subscriber.error", level=logging.WARNING, error=str(exc))

    async def drain(self) -> None:
        """Wait for scheduled subscriber coroutines (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["EventSink", "Subscriber", "Topic"]
