"""Orchestrator: analyse, route, execute, aggregate and persist one query."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from wayfinder.config import settings
from wayfinder.errors import AllRespondersFailed, ContextFetchFailed
from wayfinder.memory.models import ConversationResult, make_id, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from wayfinder.config import Settings
    from wayfinder.memory.models import MemoryEntry, ResponderAnswer
    from wayfinder.memory.store import MemoryStore
    from wayfinder.router import RoutedResponder, Router

logger = logging.getLogger(__name__)


class QueryState(StrEnum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    ROUTING = "routing"
    EXECUTING = "executing"
    AGGREGATING = "aggregating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS: dict[QueryState, frozenset[QueryState]] = {
    QueryState.IDLE: frozenset({QueryState.ANALYZING}),
    QueryState.ANALYZING: frozenset({QueryState.ROUTING, QueryState.FAILED}),
    QueryState.ROUTING: frozenset({QueryState.EXECUTING, QueryState.FAILED}),
    QueryState.EXECUTING: frozenset({QueryState.AGGREGATING, QueryState.FAILED}),
    QueryState.AGGREGATING: frozenset({QueryState.PERSISTING, QueryState.FAILED}),
    QueryState.PERSISTING: frozenset({QueryState.DONE, QueryState.FAILED}),
    QueryState.DONE: frozenset(),
    QueryState.FAILED: frozenset(),
}


@dataclass
class QueryRun:
    """Request-scoped state for one ``process_query`` call."""

    query: str
    user_id: str
    session_id: str
    id: str = field(default_factory=make_id)
    state: QueryState = QueryState.IDLE
    trace: list[QueryState] = field(default_factory=lambda: [QueryState.IDLE])
    context: list[MemoryEntry] = field(default_factory=list)
    routed: list[RoutedResponder] = field(default_factory=list)
    answers: list[ResponderAnswer] = field(default_factory=list)
    error: str | None = None

    def advance(self, state: QueryState) -> None:
        if state not in TRANSITIONS[self.state]:
            msg = f"Illegal transition {self.state} -> {state}"
            raise RuntimeError(msg)
        self.state = state
        self.trace.append(state)


def aggregate(answers: list[ResponderAnswer]) -> list[ResponderAnswer]:
    """Drop error answers when any answer succeeded, then rank by relevance.

    The sort is stable, so ties keep the router's order.
    """
    succeeded = [a for a in answers if not a.failed]
    kept = succeeded if succeeded else list(answers)
    return sorted(kept, key=lambda a: a.relevance_score, reverse=True)


class Orchestrator:
    """Drives a query through Idle -> Analyzing -> Routing -> Executing ->
    Aggregating -> Persisting -> Done, or to Failed.

    Persisting stores the result before Done; a storage failure moves the run
    from Persisting to Failed.

    Failure policy:
    - Context that cannot be read is treated as empty.
    - ``NoResponderAvailable`` from the router fails the run.
    - Responder failures are isolated into error answers. When every answer
      failed the run still completes, unless
      ``fail_on_total_responder_failure`` is set.
    - ``PersistenceFailed`` fails the run even though answers were computed.
    """

    def __init__(
        self,
        router: Router,
        memory: MemoryStore,
        *,
        config: Settings | None = None,
        on_transition: Callable[[QueryRun], None] | None = None,
    ) -> None:
        self._router = router
        self._memory = memory
        self._config = config or settings
        self._on_transition = on_transition

    def _advance(self, run: QueryRun, state: QueryState) -> None:
        run.advance(state)
        logger.debug("Query %s -> %s", run.id, state.value)
        if self._on_transition is not None:
            self._on_transition(run)

    async def process_query(self, query: str, user_id: str, session_id: str) -> ConversationResult:
        """Answer *query* for a user and persist the result.

        Raises:
            NoResponderAvailable: no responder is enabled.
            AllRespondersFailed: every responder failed and the configuration
                asks for that to be fatal.
            PersistenceFailed: the result could not be stored.
        """
        run = QueryRun(query=query, user_id=user_id, session_id=session_id)
        try:
            return await self._run(run)
        except Exception as exc:
            run.error = f"{type(exc).__name__}: {exc}"
            if run.state is not QueryState.FAILED:
                self._advance(run, QueryState.FAILED)
            logger.error("Query %s failed in %s: %s", run.id, run.trace[-2].value, run.error)
            raise

    async def _run(self, run: QueryRun) -> ConversationResult:
        t0 = time.monotonic()

        self._advance(run, QueryState.ANALYZING)
        run.context = await self._analyze(run)

        self._advance(run, QueryState.ROUTING)
        run.routed = self._router.route(run.query)

        self._advance(run, QueryState.EXECUTING)
        run.answers = await self._execute(run)
        if all(a.failed for a in run.answers) and self._config.fail_on_total_responder_failure:
            raise AllRespondersFailed(run.id, len(run.answers))

        self._advance(run, QueryState.AGGREGATING)
        result = ConversationResult(
            id=run.id,
            user_id=run.user_id,
            session_id=run.session_id,
            query=run.query,
            responses=aggregate(run.answers),
            total_execution_time_ms=round((time.monotonic() - t0) * 1000, 2),
            created_at=utcnow(),
        )

        self._advance(run, QueryState.PERSISTING)
        await self._memory.store_conversation(result)
        self._advance(run, QueryState.DONE)
        logger.info(
            "Query %s answered by %d responder(s) in %.0fms",
            run.id,
            result.responder_count,
            result.total_execution_time_ms,
        )
        return result

    async def _analyze(self, run: QueryRun) -> list[MemoryEntry]:
        try:
            context = await self._memory.get_relevant_context(
                run.user_id, run.query, self._config.context_limit
            )
        except ContextFetchFailed:
            logger.warning("Context unavailable for query %s, continuing without it", run.id)
            return []
        logger.debug("Query %s: %d context entries", run.id, len(context))
        return context

    async def _execute(self, run: QueryRun) -> list[ResponderAnswer]:
        timeout = self._config.get_responder_timeout()
        units = [
            routed.responder.answer(
                run.query,
                user_id=run.user_id,
                session_id=run.session_id,
                relevance_score=routed.relevance_score,
                context_limit=self._config.responder_context_limit,
                shared_context=run.context,
                timeout=timeout,
            )
            for routed in run.routed
        ]
        answers = await asyncio.gather(*units)
        failed = sum(1 for a in answers if a.failed)
        if failed:
            logger.warning("Query %s: %d of %d responder(s) failed", run.id, failed, len(answers))
        return list(answers)
