"""Tests for Orchestrator — the query state machine."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FailingGenerator, SlowGenerator
from wayfinder.config import Settings
from wayfinder.errors import (
    AllRespondersFailed,
    ContextFetchFailed,
    NoResponderAvailable,
    PersistenceFailed,
)
from wayfinder.llm.generator import CannedGenerator, Generation
from wayfinder.memory.models import ResponderAnswer
from wayfinder.memory.store import MemoryStore
from wayfinder.orchestrator import Orchestrator, QueryRun, QueryState, aggregate
from wayfinder.responders.history import FIRST_TIME_MESSAGE
from wayfinder.responders.registry import DEFAULT_DESCRIPTORS, ResponderRegistry
from wayfinder.router import Router

_HAPPY_TRACE = [
    QueryState.IDLE,
    QueryState.ANALYZING,
    QueryState.ROUTING,
    QueryState.EXECUTING,
    QueryState.AGGREGATING,
    QueryState.PERSISTING,
    QueryState.DONE,
]


class Harness:
    """Orchestrator wired to a registry, recording every run it drives."""

    def __init__(self, memory, generator=None, config: Settings | None = None, descriptors=None):
        self.registry = ResponderRegistry.from_descriptors(
            descriptors or DEFAULT_DESCRIPTORS, memory, generator or CannedGenerator()
        )
        self.runs: list[QueryRun] = []
        self.orchestrator = Orchestrator(
            Router(self.registry),
            memory,
            config=config or Settings(),
            on_transition=self._record,
        )

    def _record(self, run: QueryRun) -> None:
        if not self.runs or self.runs[-1] is not run:
            self.runs.append(run)

    @property
    def trace(self) -> list[QueryState]:
        return self.runs[-1].trace

    async def ask(self, query: str, user_id: str = "u1"):
        return await self.orchestrator.process_query(query, user_id, "s1")


class OnlyFailsFor:
    """Canned generator that fails for one responder's system prompt."""

    def __init__(self, marker: str) -> None:
        self.marker = marker

    async def generate(self, system_prompt, user_prompt, context, *, draft=""):
        if self.marker in system_prompt:
            raise RuntimeError("river model down")
        return Generation(text=draft)


def _answer(rid: str, relevance: int, error: str | None = None) -> ResponderAnswer:
    return ResponderAnswer(
        responder_id=rid,
        responder_name=rid,
        text=rid,
        confidence=0.5,
        relevance_score=relevance,
        error=error,
    )


# -- aggregate -----------------------------------------------------------------


def test_aggregate_drops_errors_when_any_succeeded() -> None:
    answers = [_answer("a", 2, error="boom"), _answer("b", 1), _answer("c", 3)]
    assert [a.responder_id for a in aggregate(answers)] == ["c", "b"]


def test_aggregate_keeps_errors_when_all_failed() -> None:
    answers = [_answer("a", 1, error="x"), _answer("b", 1, error="y")]
    assert [a.responder_id for a in aggregate(answers)] == ["a", "b"]


def test_aggregate_is_stable_on_ties() -> None:
    answers = [_answer("river", 2), _answer("scenic", 2), _answer("history", 5)]
    assert [a.responder_id for a in aggregate(answers)] == ["history", "river", "scenic"]


# -- QueryRun ------------------------------------------------------------------


def test_illegal_transition_rejected() -> None:
    run = QueryRun(query="q", user_id="u1", session_id="s1")
    with pytest.raises(RuntimeError, match="Illegal transition"):
        run.advance(QueryState.EXECUTING)


def test_terminal_states_are_final() -> None:
    run = QueryRun(query="q", user_id="u1", session_id="s1")
    run.advance(QueryState.ANALYZING)
    run.advance(QueryState.FAILED)
    with pytest.raises(RuntimeError):
        run.advance(QueryState.ROUTING)


# -- Happy path ----------------------------------------------------------------


async def test_process_query_ranks_and_persists(memory: MemoryStore) -> None:
    harness = Harness(memory)

    result = await harness.ask("Find rivers near mountain regions")

    assert [a.responder_id for a in result.responses] == ["river", "scenic", "history"]
    assert [a.relevance_score for a in result.responses] == [3, 1, 1]
    assert not any(a.failed for a in result.responses)
    assert result.total_execution_time_ms >= 0
    assert harness.trace == _HAPPY_TRACE

    stored = await memory.get_conversation(result.id)
    assert stored is not None
    assert stored.model_dump() == result.model_dump()


async def test_process_query_uses_previous_context(memory: MemoryStore) -> None:
    harness = Harness(memory)
    await harness.ask("boating on a lake")

    result = await harness.ask("lake fishing")

    river = next(a for a in result.responses if a.responder_id == "river")
    assert "earlier conversation" in river.text


async def test_first_time_user_retrospective_query(memory: MemoryStore) -> None:
    harness = Harness(memory)

    result = await harness.ask("show me my past searches")

    [answer] = result.responses
    assert answer.responder_id == "history"
    assert answer.text == FIRST_TIME_MESSAGE
    assert answer.relevance_score == 3


async def test_off_topic_query_gets_default_answer(memory: MemoryStore) -> None:
    result = await Harness(memory).ask("xyz")
    assert [a.responder_id for a in result.responses] == ["scenic"]
    assert result.responses[0].relevance_score == 1


async def test_responders_run_concurrently(memory: MemoryStore) -> None:
    harness = Harness(memory, SlowGenerator(delay=0.2))

    t0 = time.monotonic()
    result = await harness.ask("scenic river park")
    elapsed = time.monotonic() - t0

    assert len(result.responses) == 4
    assert not any(a.failed for a in result.responses)
    assert all(a.execution_time_ms >= 150 for a in result.responses)
    # Sequential execution would take at least 4 x 0.2s.
    assert elapsed < 0.6


async def test_concurrent_queries_for_two_users(memory: MemoryStore) -> None:
    harness = Harness(memory, SlowGenerator(delay=0.05))

    first, second = await asyncio.gather(
        harness.ask("river fishing", user_id="u1"),
        harness.ask("picnic garden", user_id="u2"),
    )

    assert [r.id for r in await memory.get_conversation_history("u1")] == [first.id]
    assert [r.id for r in await memory.get_conversation_history("u2")] == [second.id]
    assert first.user_id == "u1"
    assert second.user_id == "u2"


# -- Responder failures --------------------------------------------------------


async def test_partial_failure_hides_error_answers(memory: MemoryStore) -> None:
    harness = Harness(memory, OnlyFailsFor("River guide"))

    result = await harness.ask("Find rivers near mountain regions")

    assert [a.responder_id for a in result.responses] == ["scenic", "history"]
    assert harness.trace[-1] is QueryState.DONE


async def test_all_responders_fail_returns_error_answers(memory: MemoryStore) -> None:
    generator = FailingGenerator()
    harness = Harness(memory, generator)

    result = await harness.ask("scenic river park")

    assert len(result.responses) == 4
    assert generator.calls == 4
    assert all(a.failed for a in result.responses)
    assert all(a.confidence == 0.1 for a in result.responses)
    assert harness.trace[-1] is QueryState.DONE
    assert await memory.get_conversation(result.id) is not None


async def test_total_failure_can_be_fatal(memory: MemoryStore) -> None:
    harness = Harness(
        memory, FailingGenerator(), config=Settings(fail_on_total_responder_failure=True)
    )

    with pytest.raises(AllRespondersFailed) as excinfo:
        await harness.ask("scenic river park")

    assert excinfo.value.count == 4
    assert harness.trace[-2:] == [QueryState.EXECUTING, QueryState.FAILED]
    assert await memory.get_conversation_history("u1") == []


async def test_responder_timeout(memory: MemoryStore) -> None:
    harness = Harness(
        memory, SlowGenerator(delay=5), config=Settings(responder_timeout_seconds=0.05)
    )

    result = await harness.ask("river")

    assert result.responses
    assert all(a.error == "Timed out after 0.05s" for a in result.responses)


# -- Infrastructure failures ---------------------------------------------------


async def test_store_down_context_empty_but_persistence_fatal() -> None:
    memory = MagicMock()
    memory.get_relevant_context = AsyncMock(side_effect=ContextFetchFailed("down"))
    memory.get_conversation_history = AsyncMock(side_effect=PersistenceFailed("down"))
    memory.search = AsyncMock(side_effect=PersistenceFailed("down"))
    memory.store_conversation = AsyncMock(side_effect=PersistenceFailed("down"))
    harness = Harness(memory)

    with pytest.raises(PersistenceFailed):
        await harness.ask("Find rivers near mountain regions")

    run = harness.runs[-1]
    assert run.context == []
    assert run.trace[-3:] == [
        QueryState.AGGREGATING,
        QueryState.PERSISTING,
        QueryState.FAILED,
    ]
    assert run.error == "PersistenceFailed: down"
    # Topical responders still answered; only history needed the store.
    assert [a.failed for a in run.answers] == [False, False, True]
    memory.store_conversation.assert_awaited_once()


async def test_no_responder_available(memory: MemoryStore) -> None:
    descriptors = [d.model_copy(update={"enabled": False}) for d in DEFAULT_DESCRIPTORS]
    harness = Harness(memory, descriptors=descriptors)

    with pytest.raises(NoResponderAvailable):
        await harness.ask("rivers")

    assert harness.trace == [
        QueryState.IDLE,
        QueryState.ANALYZING,
        QueryState.ROUTING,
        QueryState.FAILED,
    ]
    assert await memory.get_conversation_history("u1") == []


async def test_context_limit_from_config(memory: MemoryStore) -> None:
    memory.get_relevant_context = AsyncMock(return_value=[])
    harness = Harness(memory, config=Settings(context_limit=7, responder_context_limit=2))

    await harness.ask("river")

    limits = [call.args[2] for call in memory.get_relevant_context.await_args_list]
    assert limits[0] == 7
    assert set(limits[1:]) == {2}
