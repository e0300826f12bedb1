"""Async Claude API client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import anthropic

from wayfinder.config import settings

logger = logging.getLogger(__name__)

_client: anthropic.AsyncAnthropic | None = None


@dataclass
class Completion:
    """Text returned by a single-shot call plus its token usage."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


async def complete_text(
    messages: list[dict[str, Any]],
    *,
    system: str | list[dict[str, Any]] | None = None,
    model: str | None = None,
    max_tokens: int | None = None,
) -> Completion:
    """Single-shot Claude call — no tools, no streaming."""
    client = _get_client()
    kwargs: dict[str, Any] = {
        "model": model or settings.generator_model,
        "max_tokens": max_tokens or settings.generator_max_tokens,
        "messages": messages,
    }
    if system is not None:
        kwargs["system"] = system
    response = await client.messages.create(**kwargs)
    text = "".join(block.text for block in response.content if block.type == "text")
    usage = getattr(response, "usage", None)
    return Completion(
        text=text,
        input_tokens=getattr(usage, "input_tokens", 0) or 0,
        output_tokens=getattr(usage, "output_tokens", 0) or 0,
    )
