"""Async event bus between engine callbacks and front-end consumers.

The engine fires dict events via callback; the bus queues them as
typed events for a consumer loop, so no front end is wired into the
engine itself.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from .events import OrchestratorEvent, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging engine callbacks to event consumers."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[OrchestratorEvent] = asyncio.Queue(
            maxsize=maxsize
        )
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback to pass as EngineConfig.event_callback."""
        await self.emit(dict_to_event(data))

    def make_callback(self):
        """Return the async callback for EngineConfig.event_callback."""
        return self._callback

    async def emit(self, event: OrchestratorEvent) -> None:
        if self._closed:
            return
        try:
            # Backpressure instead of dropping
            await asyncio.wait_for(
                self._queue.put(event), timeout=self._put_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %ss, dropping: %s (queue size: %d)",
                self._put_timeout,
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[OrchestratorEvent]:
        """Yield events as they arrive. Stops after close() once drained."""
        while True:
            if self._closed and self._queue.empty():
                return
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue
            yield event

    def close(self) -> None:
        """Stop accepting events; consumers finish what is queued."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover events and re-open the bus for a new run."""
        while not self._queue.empty():
            self._queue.get_nowait()
        self._closed = False
