"""Data models for memory entries and conversation results."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(value: datetime) -> str:
    """Serialize a datetime as a sortable UTC ISO 8601 string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def make_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex


def as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class MemoryKind(StrEnum):
    QUERY = "query"
    RESPONSE = "response"
    CONTEXT = "context"


class MemoryEntry(BaseModel):
    """A single memory row.

    ``expires_at`` of None marks a permanent (long-term) entry; any other
    value marks a short-term entry that is pruned once it has passed.
    Entries are immutable once written.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=make_id)
    user_id: str
    session_id: str
    conversation_id: str | None = None
    kind: MemoryKind
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    responder_id: str | None = None
    relevance_score: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None

    @field_validator("created_at", "expires_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @property
    def is_short_term(self) -> bool:
        return self.expires_at is not None

    @property
    def is_long_term(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``memory_entries`` column order."""
        return (
            self.id,
            self.user_id,
            self.session_id,
            self.conversation_id,
            self.kind.value,
            self.content,
            json.dumps(self.metadata),
            self.responder_id,
            self.relevance_score,
            to_iso(self.created_at),
            to_iso(self.expires_at) if self.expires_at else None,
        )

    @classmethod
    def from_row(cls, row: tuple) -> MemoryEntry:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            user_id=row[1],
            session_id=row[2],
            conversation_id=row[3],
            kind=MemoryKind(row[4]),
            content=row[5],
            metadata=json.loads(row[6] or "{}"),
            responder_id=row[7],
            relevance_score=row[8],
            created_at=from_iso(row[9]),
            expires_at=from_iso(row[10]),
        )


class ResponderAnswer(BaseModel):
    """One responder's contribution to a conversation result."""

    responder_id: str
    responder_name: str
    text: str
    confidence: float = Field(ge=0.0, le=1.0)
    relevance_score: int = Field(ge=1, le=10)
    execution_time_ms: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    error: str | None = None

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def failed(self) -> bool:
        return self.error is not None


class ConversationResult(BaseModel):
    """The outcome of one processed query."""

    id: str = Field(default_factory=make_id)
    user_id: str
    session_id: str
    query: str
    responses: list[ResponderAnswer] = Field(default_factory=list)
    total_execution_time_ms: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def responder_count(self) -> int:
        return len(self.responses)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``conversations`` column order."""
        return (
            self.id,
            self.user_id,
            self.session_id,
            self.query,
            json.dumps([a.model_dump(mode="json") for a in self.responses]),
            self.responder_count,
            self.total_execution_time_ms,
            to_iso(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> ConversationResult:
        return cls(
            id=row[0],
            user_id=row[1],
            session_id=row[2],
            query=row[3],
            responses=[ResponderAnswer.model_validate(a) for a in json.loads(row[4])],
            total_execution_time_ms=row[6],
            created_at=from_iso(row[7]),
        )


# -- Reporting -----------------------------------------------------------------


class TierStats(BaseModel):
    total: int = 0
    queries: int = 0
    responses: int = 0
    contexts: int = 0
    oldest: datetime | None = None


class ConversationStats(BaseModel):
    count: int = 0
    avg_execution_time_ms: float = 0.0
    avg_responders_per_query: float = 0.0


class MemoryStats(BaseModel):
    user_id: str
    short_term: TierStats = Field(default_factory=TierStats)
    long_term: TierStats = Field(default_factory=TierStats)
    conversations: ConversationStats = Field(default_factory=ConversationStats)


class UserExport(BaseModel):
    """Everything stored for one user, in the interchange format."""

    user_id: str
    exported_at: datetime = Field(default_factory=utcnow)
    short_term: list[MemoryEntry] = Field(default_factory=list)
    long_term: list[MemoryEntry] = Field(default_factory=list)
    conversations: list[ConversationResult] = Field(default_factory=list)

    @property
    def total_entries(self) -> int:
        return len(self.short_term) + len(self.long_term)
