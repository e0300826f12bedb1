"""Tiered conversation memory — models, persistence and expiry."""

from wayfinder.memory.models import (
    ConversationResult,
    MemoryEntry,
    MemoryKind,
    MemoryStats,
    ResponderAnswer,
    UserExport,
)
from wayfinder.memory.store import MemoryStore
from wayfinder.memory.sweeper import ExpirySweeper

__all__ = [
    "ConversationResult",
    "ExpirySweeper",
    "MemoryEntry",
    "MemoryKind",
    "MemoryStats",
    "MemoryStore",
    "ResponderAnswer",
    "UserExport",
]
