"""Cooperative run cancellation."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from cadre.errors import Cancelled

T = TypeVar("T")


class CancellationToken:
    """Signal shared between a caller and the runs it may want to stop.

    The run checks the token at every suspension point. Awaitables passed
    through :meth:`guard` are abandoned as soon as the token fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, state: str | None = None) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason, state=state)

    async def guard(self, awaitable: Awaitable[T], state: str | None = None) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            Cancelled: If the token fired before or during the wait
        """
        self.raise_if_cancelled(state)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            raise Cancelled(self.reason, state=state)
        return task.result()


def _first_error(group: BaseExceptionGroup) -> BaseException:
    error = group.exceptions[0]
    return _first_error(error) if isinstance(error, BaseExceptionGroup) else error


async def gather_or_cancel(*awaitables: Awaitable[T]) -> list[T]:
    """Await ``awaitables`` concurrently, returning their results in order.

    The first failure cancels the siblings still running and is re-raised
    once every one of them has finished.
    """

    async def wait(awaitable: Awaitable[T]) -> T:
        return await awaitable

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(wait(a)) for a in awaitables]
    except BaseExceptionGroup as e:
        raise _first_error(e) from None
    return [task.result() for task in tasks]
