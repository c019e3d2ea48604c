"""
Command line demo: stream a chat or completion answer to stdout.

    python -m talkative.main chat "What is the capital of France?"
    python -m talkative.main completion "Why is the sky blue?" --plain
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from typing import TextIO

import structlog

from .client import Client
from .config import Configuration
from .exceptions import TalkativeError
from .logging_utils import configure_logging
from .models import (
    ChatMessage,
    ChatResponse,
    CompletionMessage,
    CompletionParams,
    CompletionResponse,
    Role,
)

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="talkative", description="Stream an answer from an Ollama server."
    )
    parser.add_argument("mode", choices=["chat", "completion"])
    parser.add_argument("prompt")
    parser.add_argument("--model", default=None, help="model name (default from config)")
    parser.add_argument("--system", default=None, help="system prompt")
    parser.add_argument(
        "--plain",
        action="store_true",
        help="receive raw NDJSON lines and decode them here",
    )
    parser.add_argument("--url", default=None, help="server URL (overrides config)")
    parser.add_argument("--config", default=None, help="path to a YAML config file")
    return parser


class Printer:
    """Writes streamed text as it arrives and remembers the first error."""

    def __init__(self, out: TextIO) -> None:
        self.out = out
        self.error: Exception | None = None

    def write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def chat(self, response: ChatResponse | None, error: Exception | None) -> None:
        if error is not None:
            self.error = error
            return
        self.write(response.message.content)

    def completion(
        self, response: CompletionResponse | None, error: Exception | None
    ) -> None:
        if error is not None:
            self.error = error
            return
        self.write(response.response)

    def plain(self, line: str, error: Exception | None) -> None:
        if error is not None:
            self.error = error
            return
        if not line.strip():
            return
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as e:
            self.error = e
            return
        if "response" in payload:
            self.write(payload["response"])
        else:
            self.write((payload.get("message") or {}).get("content", ""))


async def run(args: argparse.Namespace, client: Client, out: TextIO) -> int:
    """Issue the request described by ``args`` and wait for the stream to end."""
    printer = Printer(out)

    if args.mode == "chat":
        messages = []
        if args.system:
            messages.append(ChatMessage(role=Role.SYSTEM, content=args.system))
        messages.append(ChatMessage(role=Role.USER, content=args.prompt))
        if args.plain:
            done = await client.plain_chat(args.model, printer.plain, *messages)
        else:
            done = await client.chat(args.model, printer.chat, *messages)
    else:
        message = CompletionMessage(
            prompt=args.prompt,
            params=CompletionParams(system=args.system) if args.system else None,
        )
        if args.plain:
            done = await client.plain_completion(args.model, printer.plain, message)
        else:
            done = await client.completion(args.model, printer.completion, message)

    await done
    out.write("\n")

    if printer.error is not None:
        logger.error("Stream failed", error_message=str(printer.error))
        return 1
    return 0


async def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = Configuration(args.config)
    configure_logging(config.get_logging_config()["level"])

    try:
        if args.url:
            default_model = config.get_ollama_config()["default_model"]
            client = Client(args.url, default_model=default_model)
        else:
            client = Client.from_config(config)
        async with client:
            return await run(args, client, sys.stdout)
    except TalkativeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
