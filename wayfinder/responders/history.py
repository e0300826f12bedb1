"""History-search responder: answers from the user's own memory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from wayfinder.config import settings
from wayfinder.memory.models import MemoryKind
from wayfinder.responders.base import Reply, Responder

if TYPE_CHECKING:
    from wayfinder.memory.models import ConversationResult, MemoryEntry

logger = logging.getLogger(__name__)

RETROSPECTIVE_KEYWORDS = (
    "past",
    "history",
    "previous",
    "remember",
    "before",
    "earlier",
    "search",
    "find",
)

MAX_RECENT_QUERIES = 3

FIRST_TIME_MESSAGE = (
    "I don't have any previous conversations with you yet. This looks like your first "
    "visit! Ask me about scenic places, rivers or parks and I'll remember our "
    "conversations for next time."
)


def recent_queries(hits: list[MemoryEntry], limit: int = MAX_RECENT_QUERIES) -> list[str]:
    """Distinct query texts among *hits*, most recent first."""
    queries: list[str] = []
    for entry in hits:
        if entry.kind != MemoryKind.QUERY:
            continue
        text = str(entry.metadata.get("query") or entry.content).strip()
        if text and text not in queries:
            queries.append(text)
        if len(queries) >= limit:
            break
    return queries


def history_confidence(hit_count: int, history_count: int) -> float:
    score = 0.5
    if hit_count:
        score += 0.2
    if hit_count > 5:
        score += 0.1
    if history_count:
        score += 0.1
    if history_count > 3:
        score += 0.1
    return round(min(score, 1.0), 2)


class HistoryResponder(Responder):
    """Searches past conversations and summarises what it finds.

    Topical keywords do not shape the answer. The narrative depends only on
    how many memory rows match the query and how much history the user has.
    """

    topic_type = "history"
    default_system_prompt = """\
You are the History guide. You help users recall their previous questions and the
answers they received.

Summarise what the user has asked before, point out recurring interests and
suggest how past conversations relate to the current query. Never invent past
conversations: only use the history you are given."""

    def __init__(self, *args, history_limit: int | None = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._history_limit = (
            history_limit if history_limit is not None else settings.history_limit
        )

    def narrative(self, hits: list[MemoryEntry], history: list[ConversationResult]) -> str:
        if hits:
            parts = [f"I found {len(hits)} matching item(s) in your past conversations."]
            queries = recent_queries(hits)
            if queries:
                quoted = ", ".join(f'"{q}"' for q in queries)
                parts.append(f"Your most recent related queries: {quoted}.")
            if history:
                last = history[0]
                parts.append(
                    f'Your last conversation was "{last.query}" on '
                    f"{last.created_at.date().isoformat()}."
                )
            return " ".join(parts)
        if history:
            noun = "conversation" if len(history) == 1 else "conversations"
            more = " or more" if len(history) >= self._history_limit else ""
            return (
                f"I couldn't find anything matching this query, but you have "
                f"{len(history)}{more} previous {noun} with me. Try searching for a "
                "place or activity you asked about before."
            )
        return FIRST_TIME_MESSAGE

    async def generate(
        self,
        query: str,
        context: list[MemoryEntry],
        *,
        user_id: str,
        session_id: str,
    ) -> Reply:
        history = await self._memory.get_conversation_history(user_id, self._history_limit)
        hits = await self._memory.search(user_id, query)
        logger.debug("[%s] %d search hits, %d conversations", self.name, len(hits), len(history))

        generation = await self._render(query, context, self.narrative(hits, history))
        return Reply(
            text=generation.text.strip(),
            confidence=history_confidence(len(hits), len(history)),
            input_tokens=generation.input_tokens,
            output_tokens=generation.output_tokens,
        )
