"""
HTTP client for the chat and completion endpoints.

Every request-issuing coroutine validates its arguments, POSTs the request
and checks the response status before it returns, raising on any failure up
to that point. Only then is the response body handed over, either to a
background task that drives a callback (the returned ``CompletionSignal``
fires once that task has delivered everything) or to the caller as an async
generator.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable, Coroutine, Sequence
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from .config import Configuration
from .exceptions import (
    BadRequestError,
    CallbackError,
    EncodingError,
    InvokeError,
    MessageError,
    UrlError,
)
from .logging_utils import log_operation, operation_context
from .models import (
    DEFAULT_MODEL,
    ChatMessage,
    ChatParams,
    ChatRequest,
    ChatResponse,
    CompletionMessage,
    CompletionRequest,
    CompletionResponse,
)
from .streaming import (
    CompletionSignal,
    PlainCallback,
    TypedCallback,
    iter_response,
    stream_plain_response,
    stream_response,
)

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=None)

INVOKE_HINT = "please make sure ollama server is running and url is correct"


class Client:
    """
    Client for an Ollama server.

    The only state shared between requests (endpoint URLs, default model and
    the underlying ``httpx.AsyncClient``) is read-only after construction, so
    any number of requests may stream concurrently without locking.
    """

    def __init__(
        self,
        url: str,
        *,
        default_model: str = DEFAULT_MODEL,
        http_client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            url: Base URL of the server, e.g. ``http://localhost:11434``
            default_model: Model used when a request names none
            http_client: Shared transport; left open by ``close()`` when given
            timeout: Transport timeouts for an internally created client

        Raises:
            UrlError: If the URL is blank or not an http(s) URL with a host
        """
        self.base_url = self._validate_url(url)
        self.default_model = default_model or DEFAULT_MODEL
        self.urls: dict[str, str] = {
            "chat": f"{self.base_url}/api/chat",
            "completion": f"{self.base_url}/api/generate",
        }
        self._owns_client = http_client is None
        self.client: httpx.AsyncClient = http_client or httpx.AsyncClient(
            timeout=timeout or DEFAULT_TIMEOUT
        )
        self._tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_config(
        cls,
        config: Configuration,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> Client:
        """Create a client from validated configuration."""
        ollama_config = config.get_ollama_config()
        http_config = config.get_http_client_config()
        timeout = httpx.Timeout(
            connect=http_config["connect_timeout"],
            read=http_config["read_timeout"],
            write=http_config["write_timeout"],
            pool=http_config["pool_timeout"],
        )
        return cls(
            ollama_config["base_url"],
            default_model=ollama_config["default_model"],
            http_client=http_client,
            timeout=timeout,
        )

    @staticmethod
    def _validate_url(url: str) -> str:
        candidate = (url or "").strip().rstrip("/")
        if not candidate:
            raise UrlError("invalid url: url cannot be empty")
        try:
            parsed = httpx.URL(candidate)
        except httpx.InvalidURL as e:
            raise UrlError(f"invalid url '{url}': {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise UrlError(
                f"invalid url '{url}': expected an http(s) URL with a host"
            )
        return candidate

    # ── Callback operations ──────────────────────────────────

    @log_operation("chat")
    async def chat(
        self,
        model: str | None,
        callback: TypedCallback[ChatResponse],
        *messages: ChatMessage,
        params: ChatParams | None = None,
    ) -> CompletionSignal:
        """
        Start a chat and deliver each decoded turn to ``callback``.

        Returns:
            Signal that fires after the last callback invocation
        """
        self._require_callback(callback)
        request = self._chat_request(model, messages, params)
        response = await self._post("chat", request)
        return self._spawn(
            stream_response(response, ChatResponse, callback),
            response,
            "chat",
            request.model,
        )

    @log_operation("plain_chat")
    async def plain_chat(
        self,
        model: str | None,
        callback: PlainCallback,
        *messages: ChatMessage,
        params: ChatParams | None = None,
    ) -> CompletionSignal:
        """Start a chat and deliver each raw NDJSON line to ``callback``."""
        self._require_callback(callback)
        request = self._chat_request(model, messages, params)
        response = await self._post("chat", request)
        return self._spawn(
            stream_plain_response(response, callback),
            response,
            "plain_chat",
            request.model,
        )

    @log_operation("completion")
    async def completion(
        self,
        model: str | None,
        callback: TypedCallback[CompletionResponse],
        message: CompletionMessage | None,
    ) -> CompletionSignal:
        """
        Start a completion and deliver each decoded fragment to ``callback``.

        Returns:
            Signal that fires after the last callback invocation
        """
        self._require_callback(callback)
        request = self._completion_request(model, message)
        response = await self._post("completion", request)
        return self._spawn(
            stream_response(response, CompletionResponse, callback),
            response,
            "completion",
            request.model,
        )

    @log_operation("plain_completion")
    async def plain_completion(
        self,
        model: str | None,
        callback: PlainCallback,
        message: CompletionMessage | None,
    ) -> CompletionSignal:
        """Start a completion and deliver each raw NDJSON line to ``callback``."""
        self._require_callback(callback)
        request = self._completion_request(model, message)
        response = await self._post("completion", request)
        return self._spawn(
            stream_plain_response(response, callback),
            response,
            "plain_completion",
            request.model,
        )

    # ── Pull-based operations ────────────────────────────────

    @log_operation("iter_chat")
    async def iter_chat(
        self,
        model: str | None,
        *messages: ChatMessage,
        params: ChatParams | None = None,
    ) -> AsyncGenerator[ChatResponse]:
        """
        Start a chat and return its turns as an async generator.

        Iterate it inside ``contextlib.aclosing`` so that stopping early
        releases the connection. The generator raises ``DecodingError`` where
        the callback form would report one.
        """
        request = self._chat_request(model, messages, params)
        response = await self._post("chat", request)
        return iter_response(response, ChatResponse)

    @log_operation("iter_completion")
    async def iter_completion(
        self,
        model: str | None,
        message: CompletionMessage | None,
    ) -> AsyncGenerator[CompletionResponse]:
        """Start a completion and return its fragments as an async generator."""
        request = self._completion_request(model, message)
        response = await self._post("completion", request)
        return iter_response(response, CompletionResponse)

    # ── Request building and dispatch ────────────────────────

    @staticmethod
    def _require_callback(callback: Callable[..., Any] | None) -> None:
        if callback is None:
            raise CallbackError()
        if not callable(callback):
            raise CallbackError("callback must be callable")

    def _resolve_model(self, model: str | None) -> str:
        return model or self.default_model

    def _chat_request(
        self,
        model: str | None,
        messages: Sequence[ChatMessage],
        params: ChatParams | None,
    ) -> ChatRequest:
        model = self._resolve_model(model)
        if not messages:
            raise MessageError(model=model)

        extra = params.model_dump(exclude_none=True) if params else {}
        try:
            return ChatRequest(model=model, messages=list(messages), **extra)
        except ValidationError as e:
            raise MessageError(f"invalid chat messages: {e}", model=model) from e

    def _completion_request(
        self, model: str | None, message: CompletionMessage | None
    ) -> CompletionRequest:
        model = self._resolve_model(model)
        if message is None:
            raise MessageError(model=model)
        return CompletionRequest.from_message(model, message)

    async def _post(
        self, endpoint: str, request: ChatRequest | CompletionRequest
    ) -> httpx.Response:
        """POST ``request`` and return the open, successful streamed response."""
        try:
            body = request.model_dump_json(exclude_none=True)
        except (TypeError, ValueError) as e:
            raise EncodingError(f"unable to encode: {e}", model=request.model) from e

        http_request = self.client.build_request(
            "POST",
            self.urls[endpoint],
            content=body,
            headers={"Content-Type": "application/json"},
        )

        try:
            response = await self.client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise InvokeError(
                f"unable to invoke ollama api: {e}", model=request.model
            ) from e

        if response.status_code == httpx.codes.OK:
            return response

        try:
            if response.status_code == httpx.codes.BAD_REQUEST:
                try:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                except httpx.HTTPError as e:
                    raise InvokeError(
                        f"unable to invoke ollama api: {e}",
                        model=request.model,
                        status_code=response.status_code,
                    ) from e
                raise BadRequestError(
                    f"bad request\n{detail}",
                    model=request.model,
                    status_code=response.status_code,
                    response_body=detail,
                )
            raise InvokeError(
                f"unable to invoke ollama api: {INVOKE_HINT}",
                model=request.model,
                status_code=response.status_code,
            )
        finally:
            await response.aclose()

    # ── Background drains ────────────────────────────────────

    def _spawn(
        self,
        drain: Coroutine[Any, Any, None],
        response: httpx.Response,
        operation: str,
        model: str,
    ) -> CompletionSignal:
        """Run ``drain`` in a background task paired with a fresh signal."""
        signal = CompletionSignal()
        task = asyncio.create_task(self._drain(drain, signal, operation, model))
        signal.task = task
        self._tasks.add(task)

        def on_done(finished: asyncio.Task[None]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled() and not signal.done():
                # Cancelled before its first step: the drain never ran.
                drain.close()
                signal.cancel()
                closer = asyncio.create_task(response.aclose())
                self._tasks.add(closer)
                closer.add_done_callback(self._tasks.discard)
                logger.debug(
                    "Stream cancelled before start", operation=operation, model=model
                )

        task.add_done_callback(on_done)
        logger.debug("Stream dispatched", operation=operation, model=model)
        return signal

    @staticmethod
    async def _drain(
        drain: Coroutine[Any, Any, None],
        signal: CompletionSignal,
        operation: str,
        model: str,
    ) -> None:
        try:
            async with operation_context(
                f"{operation}.stream", context={"model": model}
            ):
                await drain
        except asyncio.CancelledError:
            signal.cancel()
            raise
        except Exception as e:
            signal.fail(e)
        else:
            signal.set()

    async def close(self) -> None:
        """Wait for in-flight drains, then close the HTTP client if owned."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Client:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
