"""Shared test fixtures."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from wayfinder.llm.generator import CannedGenerator, Generation
from wayfinder.memory.models import MemoryEntry, MemoryKind
from wayfinder.memory.store import MemoryStore
from wayfinder.responders.registry import DEFAULT_DESCRIPTORS, ResponderRegistry

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingGenerator:
    """Generator that always raises."""

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, system_prompt, user_prompt, context, *, draft=""):
        self.calls += 1
        raise RuntimeError("model unavailable")


class SlowGenerator:
    """Generator that sleeps before answering."""

    def __init__(self, delay: float = 1.0) -> None:
        self.delay = delay

    async def generate(self, system_prompt, user_prompt, context, *, draft=""):
        await asyncio.sleep(self.delay)
        return Generation(text=draft or "slow answer")


class RecordingGenerator:
    """Returns the draft and remembers every prompt it saw."""

    def __init__(self) -> None:
        self.prompts: list[tuple[str, str]] = []

    async def generate(self, system_prompt, user_prompt, context, *, draft=""):
        self.prompts.append((system_prompt, user_prompt))
        return Generation(text=draft, input_tokens=10, output_tokens=20)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory(tmp_path: Path, clock: FakeClock) -> MemoryStore:
    """MemoryStore backed by a temp database and a controllable clock."""
    return MemoryStore(db_path=tmp_path / "test.db", clock=clock)


@pytest.fixture
def registry(memory: MemoryStore) -> ResponderRegistry:
    """The four default responders with offline canned answers."""
    return ResponderRegistry.from_descriptors(DEFAULT_DESCRIPTORS, memory, CannedGenerator())


@pytest.fixture
def make_entry(clock: FakeClock):
    """Factory for MemoryEntry rows; short-term unless ``long_term=True``."""

    def _make(
        content: str = "rivers in Kerala",
        *,
        user_id: str = "u1",
        kind: MemoryKind = MemoryKind.QUERY,
        long_term: bool = False,
        age: timedelta = timedelta(0),
        ttl: timedelta = timedelta(days=7),
        **kwargs,
    ) -> MemoryEntry:
        created_at = clock.now - age
        return MemoryEntry(
            user_id=user_id,
            session_id="s1",
            kind=kind,
            content=content,
            created_at=created_at,
            expires_at=None if long_term else created_at + ttl,
            **kwargs,
        )

    return _make
