"""Cooperative cancellation tokens.

A token is cancelled once and stays cancelled. Child tokens are
cancelled together with their parent, which is how a user abort on the
root reaches every running agent, model stream and subprocess below it.
Cancelling a child never affects the parent or siblings.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from .errors import OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._children: list[CancellationToken] = []
        self.reason: str | None = None
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason or "parent cancelled")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in self._children:
            child.cancel(reason)

    def child(self) -> CancellationToken:
        return CancellationToken(parent=self)

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise OperationCancelledError(self.reason or "cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancellation the inner task is cancelled and
        OperationCancelledError is raised.
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            task.cancel()
            await asyncio.wait({task})
            raise OperationCancelledError(self.reason or "cancelled")
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.wait({task})
        logger.debug("Awaitable interrupted by cancellation: %s", self.reason)
        raise OperationCancelledError(self.reason or "cancelled")
