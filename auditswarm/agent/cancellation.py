from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Awaitable, TypeVar

from ..errors import Cancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared by a loop and its helpers.

    Cancelling a token cancels every live token created with :meth:`child`.
    Children are held weakly and go away once their run finishes.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        logger.info("Cancellation requested")
        self._event.set()
        for child in list(self._children):
            child.cancel()

    def child(self) -> "CancellationToken":
        token = CancellationToken()
        if self.cancelled:
            token.cancel()
        self._children.add(token)
        return token

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled("Cancelled by user")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        The in-flight task is cancelled and :class:`Cancelled` is raised when
        cancellation wins the race.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        raise Cancelled("Cancelled by user")
