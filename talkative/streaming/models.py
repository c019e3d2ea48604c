"""
Types shared by the streaming parsers.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

import httpx


class ByteStream(Protocol):
    """
    Sequentially readable, closable response body.

    ``httpx.Response`` opened with ``stream=True`` satisfies this interface.
    """

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Yield the body in arrival order."""
        ...

    async def aclose(self) -> None:
        """Release the underlying connection."""
        ...


# Callbacks may be plain functions or coroutine functions.
type TypedCallback[T] = Callable[[T | None, Exception | None], Awaitable[None] | None]
type PlainCallback = Callable[[str, Exception | None], Awaitable[None] | None]

# Failures raised while pulling bytes from a stream.
READ_ERRORS: tuple[type[BaseException], ...] = (
    httpx.HTTPError,
    httpx.StreamError,
    OSError,
    UnicodeDecodeError,
)
