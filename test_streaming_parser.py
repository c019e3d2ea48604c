#!/usr/bin/env python3
"""
Tests for the NDJSON stream parsers.

Covers the typed decoder, the raw line streamer, and the callback drivers
built on both, using an in-memory byte stream that counts close calls.
"""

import asyncio
from contextlib import aclosing

import httpx
import pytest

from talkative.exceptions import DecodingError, StreamReadError
from talkative.models import ChatResponse, CompletionResponse
from talkative.streaming import (
    iter_plain_lines,
    iter_response,
    stream_plain_response,
    stream_response,
)


class FakeStream:
    """Byte stream that yields fixed chunks, optionally failing afterwards."""

    def __init__(self, chunks, error: Exception | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.close_count = 0

    async def aiter_bytes(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.close_count += 1


class Recorder:
    """Callback that records every invocation."""

    def __init__(self):
        self.values = []
        self.errors = []

    def __call__(self, value, error):
        if error is not None:
            self.errors.append(error)
        else:
            self.values.append(value)


def fragments(*texts: str, final: bool = True) -> bytes:
    lines = [
        f'{{"model":"llama2","response":"{text}","done":false}}\n' for text in texts
    ]
    if final:
        lines.append('{"model":"llama2","response":"","done":true,"eval_count":3}\n')
    return "".join(lines).encode()


async def collect(stream, model=CompletionResponse):
    async with aclosing(iter_response(stream, model)) as values:
        return [value async for value in values]


class TestIterResponse:
    """Test the pull-based typed decoder."""

    @pytest.mark.asyncio
    async def test_well_formed_objects(self):
        """Test that N objects decode in order and the stream is closed once."""
        stream = FakeStream([fragments("Hello", ", ", "It is nice talking to you.")])

        values = await collect(stream)

        assert [v.response for v in values] == [
            "Hello", ", ", "It is nice talking to you.", ""
        ]
        assert values[-1].done is True
        assert values[-1].eval_count == 3
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        """Test that an empty body yields nothing."""
        stream = FakeStream([])
        assert await collect(stream) == []
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_whitespace_only_stream(self):
        """Test that blank lines between and after values are skipped."""
        stream = FakeStream([b"\n\n", b'{"response":"a"}\n\n', b"  \n"])
        values = await collect(stream)
        assert [v.response for v in values] == ["a"]

    @pytest.mark.asyncio
    async def test_object_split_across_chunks(self):
        """Test that values are reassembled from arbitrary chunk boundaries."""
        data = fragments("Hello", "world")
        stream = FakeStream([data[i:i + 3] for i in range(0, len(data), 3)])

        values = await collect(stream)

        assert [v.response for v in values] == ["Hello", "world", ""]
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_number_split_across_chunks(self):
        """Test that a number cut by a chunk boundary is not ended early."""
        stream = FakeStream([b'{"eval_count": 1', b'2, "done": tr', b"ue}"])
        values = await collect(stream)
        assert values[0].eval_count == 12
        assert values[0].done is True

    @pytest.mark.asyncio
    async def test_multibyte_character_split_across_chunks(self):
        """Test that a UTF-8 sequence cut by a chunk boundary decodes."""
        data = '{"response":"héllo"}\n'.encode()
        cut = data.index(b"\xc3") + 1
        stream = FakeStream([data[:cut], data[cut:]])

        values = await collect(stream)

        assert values[0].response == "héllo"

    @pytest.mark.asyncio
    async def test_value_spanning_lines(self):
        """Test that values are delimited by JSON syntax, not newlines."""
        stream = FakeStream([
            b'{\n  "message": {"role": "assistant", "content": "a"},\n',
            b'  "done": false\n}\n{"message": {"role": "assistant", "content": "b"}}',
        ])

        values = await collect(stream, ChatResponse)

        assert [v.message.content for v in values] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_truncated_object(self):
        """Test that a body ending mid-object raises after the good values."""
        stream = FakeStream([fragments("Hello", final=False) + b'{"response":"wor'])
        received = []

        with pytest.raises(DecodingError):
            async for value in iter_response(stream, CompletionResponse):
                received.append(value.response)

        assert received == ["Hello"]
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        """Test that a plain text body is a decoding failure."""
        stream = FakeStream([b"ok"])

        with pytest.raises(DecodingError) as exc_info:
            await collect(stream)

        assert exc_info.value.__cause__ is not None
        assert stream.close_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("constant", [b"NaN", b"Infinity", b"-Infinity"])
    async def test_non_standard_constants_rejected(self, constant):
        """Test that NaN and Infinity are not accepted as JSON values."""
        stream = FakeStream([b'{"model":"m","x":' + constant + b"}\n"])

        with pytest.raises(DecodingError, match=constant.decode().lstrip("-")):
            await collect(stream, ChatResponse)

        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_many_values_in_one_chunk(self):
        """Test that a large chunk of small values decodes in order."""
        count = 20_000
        data = b"".join(
            b'{"response":"%d"}\n' % i for i in range(count)
        )
        stream = FakeStream([data])

        values = await collect(stream)

        assert len(values) == count
        assert values[0].response == "0"
        assert values[-1].response == str(count - 1)

    @pytest.mark.asyncio
    async def test_value_does_not_match_model(self):
        """Test that a JSON value of the wrong shape is a decoding failure."""
        stream = FakeStream([b"[1, 2, 3]\n"])

        with pytest.raises(DecodingError, match="CompletionResponse"):
            await collect(stream)

        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_invalid_utf8(self):
        """Test that invalid UTF-8 is a decoding failure."""
        stream = FakeStream([b'{"response":"\xff"}\n'])

        with pytest.raises(DecodingError) as exc_info:
            await collect(stream)

        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_read_error_mid_stream(self):
        """Test that an I/O failure during a read is a decoding failure."""
        stream = FakeStream(
            [fragments("Hello", final=False)], error=httpx.ReadError("connection reset")
        )
        received = []

        with pytest.raises(DecodingError) as exc_info:
            async for value in iter_response(stream, CompletionResponse):
                received.append(value.response)

        assert received == ["Hello"]
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_early_stop_closes_stream(self):
        """Test that leaving the iterator early still closes the stream."""
        stream = FakeStream([fragments("a", "b", "c")])

        async with aclosing(iter_response(stream, CompletionResponse)) as values:
            async for value in values:
                assert value.response == "a"
                break

        assert stream.close_count == 1


class TestIterPlainLines:
    """Test the raw line streamer."""

    @pytest.mark.asyncio
    async def test_lines_are_verbatim(self):
        """Test that each line is yielded with its newline."""
        stream = FakeStream([b"a\nb\nc\n"])

        lines = [line async for line in iter_plain_lines(stream)]

        assert lines == ["a\n", "b\n", "c\n"]
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_lines_split_across_chunks(self):
        """Test that lines are reassembled from chunk boundaries."""
        stream = FakeStream([b"a", b"\nb", b"b\r\n", b"\n"])
        lines = [line async for line in iter_plain_lines(stream)]
        assert lines == ["a\n", "bb\r\n", "\n"]

    @pytest.mark.asyncio
    async def test_trailing_fragment_is_dropped(self):
        """Test that a final line without a newline is not yielded."""
        stream = FakeStream([b"a\nb"])
        lines = [line async for line in iter_plain_lines(stream)]
        assert lines == ["a\n"]
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_many_lines_in_one_chunk(self):
        """Test that a large chunk of short lines is split in order."""
        stream = FakeStream([b"x\n" * 50_000])

        count = 0
        async for line in iter_plain_lines(stream):
            assert line == "x\n"
            count += 1

        assert count == 50_000

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        """Test that an empty body yields no lines."""
        stream = FakeStream([])
        assert [line async for line in iter_plain_lines(stream)] == []
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_read_error(self):
        """Test that a failed read raises after the complete lines."""
        stream = FakeStream([b"a\nb"], error=httpx.ReadError("connection reset"))
        lines = []

        with pytest.raises(StreamReadError) as exc_info:
            async for line in iter_plain_lines(stream):
                lines.append(line)

        assert lines == ["a\n"]
        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_invalid_utf8_line(self):
        """Test that a line that is not UTF-8 is a read failure."""
        stream = FakeStream([b"ok\n\xff\n"])
        lines = []

        with pytest.raises(StreamReadError):
            async for line in iter_plain_lines(stream):
                lines.append(line)

        assert lines == ["ok\n"]
        assert stream.close_count == 1


class TestStreamResponse:
    """Test the typed callback driver."""

    @pytest.mark.asyncio
    async def test_values_delivered_in_order(self):
        """Test N callbacks in order and no errors."""
        stream = FakeStream([fragments("Hello", ", ", "It is nice talking to you.")])
        recorder = Recorder()

        await stream_response(stream, CompletionResponse, recorder)

        text = "".join(v.response for v in recorder.values)
        assert text == "Hello, It is nice talking to you."
        assert len(recorder.values) == 4
        assert recorder.errors == []
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_truncated_reports_one_error(self):
        """Test that a truncated body reports exactly one error, then ends."""
        stream = FakeStream([fragments("Hello", final=False) + b'{"resp'])
        recorder = Recorder()

        await stream_response(stream, CompletionResponse, recorder)

        assert [v.response for v in recorder.values] == ["Hello"]
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], DecodingError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_error_callback_receives_no_value(self):
        """Test that the failing invocation carries no value."""
        stream = FakeStream([b"not json"])
        calls = []

        await stream_response(
            stream, CompletionResponse, lambda value, error: calls.append((value, error))
        )

        assert len(calls) == 1
        assert calls[0][0] is None
        assert isinstance(calls[0][1], DecodingError)

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        """Test that an empty body invokes nothing."""
        stream = FakeStream([])
        recorder = Recorder()

        await stream_response(stream, CompletionResponse, recorder)

        assert recorder.values == []
        assert recorder.errors == []
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_async_callback(self):
        """Test that coroutine callbacks are awaited before the next value."""
        stream = FakeStream([fragments("a", "b")])
        received = []

        async def callback(value, error):
            await asyncio.sleep(0)
            received.append(value.response)

        await stream_response(stream, CompletionResponse, callback)

        assert received == ["a", "b", ""]

    @pytest.mark.asyncio
    async def test_callback_error_propagates_and_closes(self):
        """Test that an exception from the callback ends the drain and closes."""
        stream = FakeStream([fragments("a", "b")])

        def callback(value, error):
            raise RuntimeError("callback failed")

        with pytest.raises(RuntimeError, match="callback failed"):
            await stream_response(stream, CompletionResponse, callback)

        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_callback_raising_decoding_error_is_not_reported(self):
        """Test that a callback's own error is not mistaken for a stream error."""
        stream = FakeStream([fragments("a")])
        calls = []

        def callback(value, error):
            calls.append(error)
            raise DecodingError("raised by callback")

        with pytest.raises(DecodingError, match="raised by callback"):
            await stream_response(stream, CompletionResponse, callback)

        assert calls == [None]
        assert stream.close_count == 1


class TestStreamPlainResponse:
    """Test the raw callback driver."""

    @pytest.mark.asyncio
    async def test_lines_delivered(self):
        """Test that each line reaches the callback."""
        stream = FakeStream([b"a\nb\nc\n"])
        recorder = Recorder()

        await stream_plain_response(stream, recorder)

        assert recorder.values == ["a\n", "b\n", "c\n"]
        assert recorder.errors == []
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_read_error_reported_once(self):
        """Test that a read failure reaches the callback with an empty line."""
        stream = FakeStream([b"a\n"], error=httpx.ReadError("connection reset"))
        calls = []

        await stream_plain_response(
            stream, lambda line, error: calls.append((line, error))
        )

        assert calls[0] == ("a\n", None)
        assert len(calls) == 2
        assert calls[1][0] == ""
        assert isinstance(calls[1][1], StreamReadError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_callback_error_propagates_and_closes(self):
        """Test that an exception from the callback closes the stream once."""
        stream = FakeStream([b"a\nb\n"])

        async def callback(line, error):
            raise RuntimeError("callback failed")

        with pytest.raises(RuntimeError):
            await stream_plain_response(stream, callback)

        assert stream.close_count == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
