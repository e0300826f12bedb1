"""Content generators — the prose-producing dependency of every responder.

A generator receives a system prompt, a user prompt and the recent memory
context, and returns text. Responders also hand over their own drafted
answer, which the offline ``CannedGenerator`` returns as-is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from wayfinder.config import Settings, settings
from wayfinder.llm.client import complete_text

if TYPE_CHECKING:
    from wayfinder.memory.models import MemoryEntry

logger = logging.getLogger(__name__)

MAX_CONTEXT_LINES = 3


@dataclass
class Generation:
    """Generated text and the token counts reported for it."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


@runtime_checkable
class ContentGenerator(Protocol):
    """Anything that can turn prompts into answer text."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        context: list[MemoryEntry],
        *,
        draft: str = "",
    ) -> Generation: ...


def format_context(context: list[MemoryEntry]) -> str:
    """Render the most recent context entries as ``Previous:`` lines."""
    lines = [f"Previous: {entry.content}" for entry in context[:MAX_CONTEXT_LINES]]
    return "\n".join(lines)


class AnthropicGenerator:
    """Generates answers with Claude."""

    def __init__(self, model: str | None = None, max_tokens: int | None = None) -> None:
        self._model = model or settings.generator_model
        self._max_tokens = max_tokens or settings.generator_max_tokens

    @property
    def model(self) -> str:
        return self._model

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        context: list[MemoryEntry],
        *,
        draft: str = "",
    ) -> Generation:
        # Context already travels in the user prompt.
        system = system_prompt
        if draft:
            system += f"\n\nGround your answer in these notes:\n{draft}"

        completion = await complete_text(
            [{"role": "user", "content": user_prompt}],
            system=system,
            model=self._model,
            max_tokens=self._max_tokens,
        )
        if not completion.text.strip():
            msg = "Empty completion"
            raise ValueError(msg)
        return Generation(
            text=completion.text,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
        )


class CannedGenerator:
    """Offline generator that returns the responder's drafted answer."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        context: list[MemoryEntry],
        *,
        draft: str = "",
    ) -> Generation:
        if not draft:
            msg = "No drafted answer available"
            raise ValueError(msg)
        return Generation(text=draft)


def build_generator(config: Settings | None = None) -> ContentGenerator:
    """Claude when an API key is configured, canned answers otherwise."""
    config = config or settings
    if config.anthropic_api_key:
        logger.info("Content generator: Claude (%s)", config.generator_model)
        return AnthropicGenerator(
            model=config.generator_model, max_tokens=config.generator_max_tokens
        )
    logger.warning("Content generator: canned answers (set ANTHROPIC_API_KEY to use Claude)")
    return CannedGenerator()
