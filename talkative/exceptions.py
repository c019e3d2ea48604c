"""
Error types for talkative.

Two families:
- Dispatch errors are raised by the request-issuing coroutines before any
  streaming starts (bad arguments, unreachable server, rejected request).
- Streaming errors are handed to the caller's callback (or raised by the
  pull-based iterators) and end the stream they occurred on.
"""

from __future__ import annotations


class TalkativeError(Exception):
    """Base error with request context."""

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.model = model
        self.status_code = status_code
        self.response_body = response_body


class UrlError(TalkativeError):
    """The server URL is blank or not an http(s) URL."""


class CallbackError(TalkativeError):
    """No callback was supplied."""

    def __init__(self, message: str = "callback cannot be empty", **kwargs):
        super().__init__(message, **kwargs)


class MessageError(TalkativeError):
    """No message payload was supplied."""

    def __init__(self, message: str = "messages cannot be empty", **kwargs):
        super().__init__(message, **kwargs)


class EncodingError(TalkativeError):
    """The request could not be encoded to JSON."""


class InvokeError(TalkativeError):
    """The server could not be reached or answered with a non-success status."""


class BadRequestError(TalkativeError):
    """The server rejected the request (HTTP 400); the body is kept for context."""


class StreamingError(TalkativeError):
    """Streaming-specific errors."""


class DecodingError(StreamingError):
    """The stream produced bytes that are not a JSON value of the expected shape."""


class StreamReadError(StreamingError):
    """Reading a raw line from the stream failed."""
