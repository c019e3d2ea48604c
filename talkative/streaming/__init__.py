"""
Streaming support for talkative.

This package contains:
- Typed NDJSON decoding into pydantic models
- Raw line pass-through
- The one-shot completion signal for background drains
"""

from __future__ import annotations

from .models import ByteStream, PlainCallback, TypedCallback
from .parser import (
    iter_plain_lines,
    iter_response,
    stream_plain_response,
    stream_response,
)
from .signal import CompletionSignal

__all__ = [
    "ByteStream",
    "CompletionSignal",
    "PlainCallback",
    "TypedCallback",
    "iter_plain_lines",
    "iter_response",
    "stream_plain_response",
    "stream_response",
]
