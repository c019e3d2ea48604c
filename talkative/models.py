"""
Wire schemas for the chat and completion endpoints.

Requests are serialized with ``model_dump_json(exclude_none=True)`` so unset
optional parameters never reach the server. Response models give every field
a default and ignore unknown keys, so a partial turn still decodes.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_MODEL = "llama2"


class Role(str, Enum):
    """Sender of a chat message."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatMessage(BaseModel):
    """A single message sent or received in a chat."""
    role: Role
    content: str = ""
    images: list[str] | None = None


class ChatParams(BaseModel):
    """Optional parameters for a chat request."""
    format: str | dict[str, Any] | None = None
    options: dict[str, Any] | None = None
    template: str | None = None
    keep_alive: str | int | None = None
    tools: list[dict[str, Any]] | None = None


class ChatRequest(ChatParams):
    model: str
    messages: list[ChatMessage]


class Metrics(BaseModel):
    """Timing and token counters reported with the final turn (durations in ns)."""
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    prompt_eval_duration: int = 0
    eval_count: int = 0
    eval_duration: int = 0


class ChatResponse(Metrics):
    """One streamed chat turn."""
    model: str = ""
    created_at: str | None = None
    message: ChatMessage = Field(
        default_factory=lambda: ChatMessage(role=Role.ASSISTANT)
    )
    done: bool = False
    done_reason: str | None = None


class CompletionParams(BaseModel):
    """Optional parameters for a completion request."""
    system: str | None = None
    template: str | None = None
    context: list[int] | None = None
    raw: bool | None = None
    format: str | dict[str, Any] | None = None
    options: dict[str, Any] | None = None
    keep_alive: str | int | None = None


class CompletionMessage(BaseModel):
    """Prompt, attached images, and extra parameters for a completion."""
    prompt: str
    images: list[str] | None = None
    params: CompletionParams | None = None


class CompletionRequest(CompletionParams):
    model: str
    prompt: str
    images: list[str] | None = None

    @classmethod
    def from_message(cls, model: str, message: CompletionMessage) -> CompletionRequest:
        """Flatten a message and its parameters into one request body."""
        params = message.params.model_dump() if message.params else {}
        return cls(
            model=model,
            prompt=message.prompt,
            images=message.images,
            **params,
        )


class CompletionResponse(Metrics):
    """One streamed completion fragment."""
    model: str = ""
    created_at: str | None = None
    response: str = ""
    done: bool = False
    done_reason: str | None = None
    context: list[int] | None = None
