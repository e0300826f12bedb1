"""Router: picks and ranks the responders that should answer a query."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from wayfinder.config import settings
from wayfinder.errors import NoResponderAvailable
from wayfinder.responders.base import MAX_RELEVANCE
from wayfinder.responders.history import RETROSPECTIVE_KEYWORDS

if TYPE_CHECKING:
    from wayfinder.responders.base import Responder
    from wayfinder.responders.registry import ResponderRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoutedResponder:
    """A responder selected for a query, with its relevance score."""

    responder: Responder
    relevance_score: int

    @property
    def responder_id(self) -> str:
        return self.responder.id


def has_retrospective_intent(query: str) -> bool:
    lowered = query.lower()
    return any(keyword in lowered for keyword in RETROSPECTIVE_KEYWORDS)


class Router:
    """Scores every enabled responder against a query.

    Responders with no keyword hit are dropped, except the history responder,
    which joins whenever another responder matched or the query looks back in
    time. When nothing is selected the default responder answers alone.

    Routing is pure: the same query against an unchanged registry always
    yields the same ordered list.
    """

    def __init__(
        self,
        registry: ResponderRegistry,
        *,
        default_responder_id: str | None = None,
        history_responder_id: str | None = None,
    ) -> None:
        self._registry = registry
        self._default_id = default_responder_id or settings.default_responder_id
        self._history_id = history_responder_id or settings.history_responder_id

    def route(self, query: str) -> list[RoutedResponder]:
        enabled = self._registry.enabled()
        if not enabled:
            raise NoResponderAvailable("No responders are enabled")

        scored: list[tuple[int, Responder, int]] = []
        history: tuple[int, Responder, int] | None = None
        for index, responder in enumerate(enabled):
            score = responder.score_relevance(query)
            if responder.id == self._history_id:
                history = (index, responder, score)
            elif score > 0:
                scored.append((index, responder, score))

        if history is not None:
            index, responder, score = history
            if score > 0 or scored or has_retrospective_intent(query):
                scored.append((index, responder, max(score, 1)))

        if not scored:
            fallback = self._fallback(enabled)
            logger.info("No responder matched %r, falling back to %s", query, fallback.id)
            return [RoutedResponder(fallback, 1)]

        scored.sort(key=lambda item: (-item[2], item[1].priority, item[0]))
        routed = [
            RoutedResponder(responder, min(score, MAX_RELEVANCE))
            for _, responder, score in scored
        ]
        logger.debug(
            "Routed %r to %s",
            query,
            ", ".join(f"{r.responder_id}={r.relevance_score}" for r in routed),
        )
        return routed

    def _fallback(self, enabled: list[Responder]) -> Responder:
        for responder in enabled:
            if responder.id == self._default_id:
                return responder
        return min(enabled, key=lambda r: r.priority)
