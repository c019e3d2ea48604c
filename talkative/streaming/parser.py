"""
NDJSON stream parsers.

Two independent framings of a response body:
- typed: consecutive JSON values, each validated into a pydantic model
- plain: newline-terminated text lines, passed through untouched

Each framing comes as a pull-based async generator (``iter_response``,
``iter_plain_lines``) that raises a terminal ``StreamingError``, and as a
callback driver (``stream_response``, ``stream_plain_response``) that reports
that error through the callback instead. Every path closes the stream exactly
once. A failed stream is never resynchronized.
"""

from __future__ import annotations

import codecs
import inspect
import json
import re
import time
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing

import structlog
from pydantic import BaseModel, ValidationError

from ..exceptions import DecodingError, StreamReadError
from .models import READ_ERRORS, ByteStream, PlainCallback, TypedCallback

logger = structlog.get_logger(__name__)

JSON_WHITESPACE = re.compile(r"[ \t\n\r]*")
# A value ending on one of these cannot grow with more input.
CLOSED_VALUE_ENDINGS = '}]"'
LITERALS = ("true", "false", "null")
PARTIAL_NUMBER = re.compile(r"[-+.eE0-9]+")
UNICODE_ESCAPE_LENGTH = 6


def _needs_more_input(error: json.JSONDecodeError, buffer: str) -> bool:
    """Whether a decode failure is explained by the buffer ending too early."""
    if error.pos >= len(buffer):
        return True
    if error.msg.startswith("Unterminated string"):
        return True
    if error.msg.startswith("Invalid \\uXXXX escape"):
        return len(buffer) - error.pos < UNICODE_ESCAPE_LENGTH
    tail = buffer[error.pos:]
    if PARTIAL_NUMBER.fullmatch(tail):
        return True
    return any(literal.startswith(tail) for literal in LITERALS)


def _reject_constant(name: str) -> None:
    raise ValueError(f"invalid JSON constant {name}")


class _TextReader:
    """Incrementally decodes UTF-8 chunks pulled from a byte stream."""

    def __init__(self, stream: ByteStream) -> None:
        self._chunks: AsyncIterator[bytes] = stream.aiter_bytes()
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self.eof = False

    async def read(self) -> str:
        """Return the next decoded text, or an empty string at end of stream."""
        while not self.eof:
            chunk = await anext(self._chunks, None)
            if chunk is None:
                self.eof = True
                return self._decoder.decode(b"", final=True)
            text = self._decoder.decode(chunk)
            if text:
                return text
        return ""


async def iter_response[T: BaseModel](
    stream: ByteStream, model: type[T]
) -> AsyncGenerator[T]:
    """
    Decode consecutive JSON values from ``stream`` into ``model`` instances.

    Values are delimited by JSON syntax rather than newlines, so one value may
    span several reads or lines. Raises ``DecodingError`` (chained to the
    cause) on malformed JSON, a value that does not fit ``model``, invalid
    UTF-8, trailing partial data, or an I/O failure during a read. Ends
    quietly at a clean end of stream.
    """
    decoder = json.JSONDecoder(parse_constant=_reject_constant)
    reader = _TextReader(stream)
    buffer = ""
    pos = 0
    try:
        while True:
            pos = JSON_WHITESPACE.match(buffer, pos).end()
            if pos == len(buffer):
                if reader.eof:
                    return
                buffer, pos = await _read(reader), 0
                continue

            try:
                obj, end = decoder.raw_decode(buffer, pos)
            except json.JSONDecodeError as e:
                if reader.eof or not _needs_more_input(e, buffer):
                    raise DecodingError(f"unable to decode: {e}") from e
                buffer, pos = buffer[pos:] + await _read(reader), 0
                continue
            except ValueError as e:
                raise DecodingError(f"unable to decode: {e}") from e

            # A scalar ending at the buffer edge may still be incomplete.
            if (
                not reader.eof
                and end == len(buffer)
                and buffer[end - 1] not in CLOSED_VALUE_ENDINGS
            ):
                buffer, pos = buffer[pos:] + await _read(reader), 0
                continue

            pos = end
            try:
                value = model.model_validate(obj)
            except ValidationError as e:
                raise DecodingError(
                    f"unable to decode: value does not match {model.__name__}: {e}"
                ) from e
            yield value
    finally:
        await stream.aclose()


async def _read(reader: _TextReader) -> str:
    try:
        return await reader.read()
    except READ_ERRORS as e:
        raise DecodingError(f"unable to decode: {e}") from e


async def iter_plain_lines(stream: ByteStream) -> AsyncGenerator[str]:
    """
    Yield each newline-terminated line of ``stream`` verbatim.

    Lines keep their trailing newline. A final fragment without a newline is
    dropped. Raises ``StreamReadError`` (chained to the cause) when a read
    fails or a line is not valid UTF-8.
    """
    pending = b""
    try:
        chunks = stream.aiter_bytes()
        while True:
            try:
                chunk = await anext(chunks, None)
            except READ_ERRORS as e:
                raise StreamReadError(f"unable to read stream: {e}") from e
            if chunk is None:
                break
            pending += chunk
            start = 0
            while (newline := pending.find(b"\n", start)) != -1:
                yield _decode_line(pending[start:newline + 1])
                start = newline + 1
            pending = pending[start:]
        if pending:
            logger.debug("Dropped unterminated line", size=len(pending))
    finally:
        await stream.aclose()


def _decode_line(line: bytes) -> str:
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError as e:
        raise StreamReadError(f"unable to read stream: {e}") from e


async def _invoke(callback, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def stream_response[T: BaseModel](
    stream: ByteStream, model: type[T], callback: TypedCallback[T]
) -> None:
    """
    Drive ``iter_response`` and hand each value to ``callback(value, None)``.

    A decoding failure is reported once as ``callback(None, error)`` and ends
    the drain. Only an exception raised by the callback itself propagates.
    """
    start_time = time.perf_counter()
    units = 0
    async with aclosing(iter_response(stream, model)) as values:
        while True:
            try:
                value = await anext(values)
            except StopAsyncIteration:
                break
            except DecodingError as e:
                logger.warning(
                    "Stream decoding failed",
                    model=model.__name__,
                    units=units,
                    error_message=str(e),
                )
                await _invoke(callback, None, e)
                return
            units += 1
            await _invoke(callback, value, None)

    logger.debug(
        "Stream drained",
        model=model.__name__,
        units=units,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )


async def stream_plain_response(stream: ByteStream, callback: PlainCallback) -> None:
    """
    Drive ``iter_plain_lines`` and hand each line to ``callback(line, None)``.

    A read failure is reported once as ``callback("", error)`` and ends the
    drain. Only an exception raised by the callback itself propagates.
    """
    start_time = time.perf_counter()
    lines = 0
    async with aclosing(iter_plain_lines(stream)) as chunks:
        while True:
            try:
                line = await anext(chunks)
            except StopAsyncIteration:
                break
            except StreamReadError as e:
                logger.warning(
                    "Stream read failed", lines=lines, error_message=str(e)
                )
                await _invoke(callback, "", e)
                return
            lines += 1
            await _invoke(callback, line, None)

    logger.debug(
        "Stream drained",
        lines=lines,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
