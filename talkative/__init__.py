"""
Asyncio client for the Ollama chat and completion API.

This package provides:
- Request and response schemas as pydantic models
- Typed and raw NDJSON streaming with callback or iterator delivery
- A one-shot completion signal per callback-driven stream
- Explicit dispatch errors raised before any streaming starts
"""

from __future__ import annotations

from .client import Client
from .config import Configuration
from .exceptions import (
    BadRequestError,
    CallbackError,
    DecodingError,
    EncodingError,
    InvokeError,
    MessageError,
    StreamingError,
    StreamReadError,
    TalkativeError,
    UrlError,
)
from .models import (
    DEFAULT_MODEL,
    ChatMessage,
    ChatParams,
    ChatRequest,
    ChatResponse,
    CompletionMessage,
    CompletionParams,
    CompletionRequest,
    CompletionResponse,
    Metrics,
    Role,
)
from .streaming import CompletionSignal

__all__ = [
    "DEFAULT_MODEL",
    # Errors
    "BadRequestError",
    "CallbackError",
    # Models
    "ChatMessage",
    "ChatParams",
    "ChatRequest",
    "ChatResponse",
    # Client
    "Client",
    "CompletionMessage",
    "CompletionParams",
    "CompletionRequest",
    "CompletionResponse",
    "CompletionSignal",
    "Configuration",
    "DecodingError",
    "EncodingError",
    "InvokeError",
    "MessageError",
    "Metrics",
    "Role",
    "StreamReadError",
    "StreamingError",
    "TalkativeError",
    "UrlError",
]
