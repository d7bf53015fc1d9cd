"""Standalone future with external completion control."""

from __future__ import annotations

import asyncio
from typing import Any, Generator, Generic, Optional, TypeVar

T = TypeVar("T")


class Deferred(Generic[T]):
    """Pairs an asyncio future with its resolve/reject callbacks.

    Completing an already settled deferred is a no-op, so late replies from
    superseded operations never raise ``InvalidStateError``.
    """

    __slots__ = ("_future",)

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._future: asyncio.Future[T] = (loop or asyncio.get_running_loop()).create_future()
        # A rejected deferred nobody awaits must not log "exception was never retrieved".
        self._future.add_done_callback(_consume_exception)

    @property
    def future(self) -> asyncio.Future[T]:
        return self._future

    def is_pending(self) -> bool:
        return not self._future.done()

    def resolve(self, value: T = None) -> None:  # type: ignore[assignment]
        if not self._future.done():
            self._future.set_result(value)

    def reject(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    async def wait(self) -> T:
        """Wait for completion without cancelling the shared future."""

        return await asyncio.shield(self._future)

    def __await__(self) -> Generator[Any, None, T]:
        return self.wait().__await__()


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
