"""Base types for topic responders."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from pydantic import BaseModel, Field, field_validator

from wayfinder.errors import ContextFetchFailed, ResponderGenerationFailed
from wayfinder.llm.generator import format_context
from wayfinder.memory.models import ResponderAnswer

if TYPE_CHECKING:
    from wayfinder.llm.generator import ContentGenerator, Generation
    from wayfinder.memory.models import MemoryEntry
    from wayfinder.memory.store import MemoryStore

logger = logging.getLogger(__name__)

DEGRADED_CONFIDENCE = 0.1
DEGRADED_RELEVANCE = 1
MAX_RELEVANCE = 10
_MAX_ERROR_CHARS = 200


class ResponderDescriptor(BaseModel):
    """Configuration row describing one responder.

    Keywords drive relevance scoring; behavior lives in the Responder
    variant selected by ``topic_type``.
    """

    id: str
    name: str
    topic_type: str
    description: str = ""
    capabilities: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    priority: int = 1
    enabled: bool = True
    system_prompt: str | None = None

    @field_validator("keywords", "capabilities")
    @classmethod
    def dedupe(cls, values: list[str]) -> list[str]:
        seen: list[str] = []
        for value in values:
            value = value.strip().lower()
            if value and value not in seen:
                seen.append(value)
        return seen

    @field_validator("topic_type")
    @classmethod
    def lower_topic(cls, value: str) -> str:
        return value.strip().lower()


@dataclass
class Reply:
    """Text produced by ``Responder.generate`` and its confidence."""

    text: str
    confidence: float
    input_tokens: int = 0
    output_tokens: int = 0


class Responder(ABC):
    """Abstract topic specialist.

    Subclasses set ``topic_type`` and implement ``generate``. Callers use
    ``answer``, which never raises: context or generation failures become a
    degraded ``ResponderAnswer`` with ``error`` set.

    Example::

        class DesertResponder(Responder):
            topic_type = "desert"

            async def generate(self, query, context, **kwargs) -> Reply:
                return Reply(text="Try the Thar.", confidence=0.7)
    """

    topic_type: ClassVar[str] = ""
    default_system_prompt: ClassVar[str] = ""

    def __init__(
        self,
        descriptor: ResponderDescriptor,
        memory: MemoryStore,
        generator: ContentGenerator,
    ) -> None:
        self.descriptor = descriptor
        self._memory = memory
        self._generator = generator

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    # -- Descriptor shortcuts --------------------------------------------------

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def priority(self) -> int:
        return self.descriptor.priority

    @property
    def enabled(self) -> bool:
        return self.descriptor.enabled

    @property
    def keywords(self) -> list[str]:
        return self.descriptor.keywords

    @property
    def system_prompt(self) -> str:
        if self.descriptor.system_prompt:
            return self.descriptor.system_prompt
        if self.default_system_prompt:
            return self.default_system_prompt
        return (
            f"You are a specialized assistant named {self.name}.\n"
            f"Your role: {self.descriptor.description}\n"
            f"Your capabilities: {', '.join(self.descriptor.capabilities)}\n\n"
            "Provide helpful, accurate and detailed answers within your area of "
            "expertise. If a query is outside it, say so and share what relevant "
            "information you can."
        )

    # -- Relevance -------------------------------------------------------------

    def matched_keywords(self, query: str) -> list[str]:
        """Keywords found as substrings of the lower-cased query."""
        lowered = query.lower()
        return [kw for kw in self.keywords if kw in lowered]

    def is_relevant(self, query: str) -> bool:
        return bool(self.matched_keywords(query))

    def score_relevance(self, query: str) -> int:
        """Keyword hits, plus 2 when the query names this responder's topic."""
        score = len(self.matched_keywords(query))
        topic = self.descriptor.topic_type
        if topic and topic in query.lower():
            score += 2
        return score

    # -- Generation ------------------------------------------------------------

    @abstractmethod
    async def generate(
        self,
        query: str,
        context: list[MemoryEntry],
        *,
        user_id: str,
        session_id: str,
    ) -> Reply:
        """Produce answer text and confidence for *query*."""
        ...

    def format_prompt(self, query: str, context: list[MemoryEntry]) -> str:
        if not context:
            return query
        previous = format_context(context)
        return f"Context from previous conversations:\n{previous}\n\nCurrent query: {query}"

    async def answer(
        self,
        query: str,
        *,
        user_id: str,
        session_id: str,
        relevance_score: int,
        context_limit: int = 3,
        shared_context: list[MemoryEntry] | None = None,
        timeout: float | None = None,
    ) -> ResponderAnswer:
        """Run one execution unit: fetch context, generate, score.

        Never raises. A failure yields an answer with ``error`` set,
        confidence 0.1 and relevance 1.
        """
        t0 = time.monotonic()
        try:
            context = await self._fetch_context(user_id, query, context_limit)
            for entry in shared_context or []:
                if all(entry.id != own.id for own in context):
                    context.append(entry)

            pending = self.generate(query, context, user_id=user_id, session_id=session_id)
            if timeout is not None:
                reply = await asyncio.wait_for(pending, timeout)
            else:
                reply = await pending
        except TimeoutError as exc:
            message = f"Timed out after {timeout:g}s" if timeout else f"TimeoutError: {exc}"
            logger.warning("[%s] %s", self.name, message)
            return self._degraded(message, t0)
        except ResponderGenerationFailed as exc:
            logger.warning("[%s] Generation failed: %s", self.name, exc.message)
            return self._degraded(exc.message, t0)
        except Exception as exc:
            logger.exception("[%s] Generation failed", self.name)
            return self._degraded(f"{type(exc).__name__}: {exc}", t0)

        elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info("[%s] Answered in %.0fms", self.name, elapsed_ms)
        return ResponderAnswer(
            responder_id=self.id,
            responder_name=self.name,
            text=reply.text,
            confidence=min(max(reply.confidence, 0.0), 1.0),
            relevance_score=min(max(relevance_score, 1), MAX_RELEVANCE),
            execution_time_ms=round(elapsed_ms, 2),
            input_tokens=reply.input_tokens,
            output_tokens=reply.output_tokens,
        )

    async def _fetch_context(self, user_id: str, query: str, limit: int) -> list[MemoryEntry]:
        try:
            return list(await self._memory.get_relevant_context(user_id, query, limit))
        except ContextFetchFailed:
            logger.warning("[%s] Context unavailable, continuing without it", self.name)
            return []

    def _degraded(self, message: str, t0: float) -> ResponderAnswer:
        return ResponderAnswer(
            responder_id=self.id,
            responder_name=self.name,
            text=f"{self.name} could not answer this query right now.",
            confidence=DEGRADED_CONFIDENCE,
            relevance_score=DEGRADED_RELEVANCE,
            execution_time_ms=round((time.monotonic() - t0) * 1000, 2),
            error=message[:_MAX_ERROR_CHARS],
        )

    async def _render(
        self, query: str, context: list[MemoryEntry], draft: str
    ) -> Generation:
        """Ask the content generator for the final text."""
        try:
            return await self._generator.generate(
                self.system_prompt,
                self.format_prompt(query, context),
                context,
                draft=draft,
            )
        except Exception as exc:
            raise ResponderGenerationFailed(self.id, f"{type(exc).__name__}: {exc}") from exc
