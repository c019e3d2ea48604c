"""
One-shot completion signal for background stream drains.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from typing import Any


class CompletionSignal:
    """
    Marks that no further callback invocations will occur for one stream.

    Written exactly once by the task draining the stream, after its last
    callback invocation. Any number of waiters may await it; none of them
    poll, and cancelling a waiter leaves the signal intact.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[bool] = (
            asyncio.get_running_loop().create_future()
        )
        self.task: asyncio.Task[None] | None = None

    def set(self) -> None:
        """Record a finished drain."""
        self._ensure_unset()
        self._future.set_result(True)

    def fail(self, error: BaseException) -> None:
        """Record a drain that ended because the callback raised."""
        self._ensure_unset()
        self._future.set_exception(error)

    def cancel(self) -> None:
        """Record a drain whose task was cancelled."""
        self._ensure_unset()
        self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    async def wait(self) -> bool:
        """Suspend until the drain has finished."""
        return await asyncio.shield(self._future)

    def __await__(self) -> Generator[Any, None, bool]:
        return self.wait().__await__()

    def _ensure_unset(self) -> None:
        if self._future.done():
            raise RuntimeError("completion signal already fired")

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"<CompletionSignal {state}>"
