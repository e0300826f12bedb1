"""MemoryStore — two-tier conversation memory persisted with aiosqlite.

Short-term entries carry an ``expires_at`` timestamp and are bounded per user
(TTL plus a maximum count enforced on every short-term write). Long-term
entries have no expiry and are only removed together with their user.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import string
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import aiosqlite

from wayfinder.config import settings
from wayfinder.errors import ContextFetchFailed, PersistenceFailed
from wayfinder.memory.models import (
    ConversationResult,
    ConversationStats,
    MemoryEntry,
    MemoryKind,
    MemoryStats,
    UserExport,
    from_iso,
    to_iso,
    utcnow,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from datetime import datetime, timedelta
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_ENTRIES = """
CREATE TABLE IF NOT EXISTS memory_entries (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    conversation_id TEXT,
    kind TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    responder_id TEXT,
    relevance_score REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    expires_at TEXT
)
"""

_CREATE_ENTRIES_INDEX = """
CREATE INDEX IF NOT EXISTS idx_memory_entries_user_created
    ON memory_entries (user_id, created_at)
"""

_CREATE_CONVERSATIONS = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    session_id TEXT NOT NULL,
    query TEXT NOT NULL,
    responses TEXT NOT NULL,
    responder_count INTEGER NOT NULL DEFAULT 0,
    total_execution_time_ms REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
)
"""

_ENTRY_COLUMNS = (
    "id, user_id, session_id, conversation_id, kind, content, metadata, "
    "responder_id, relevance_score, created_at, expires_at"
)

_CONVERSATION_COLUMNS = (
    "id, user_id, session_id, query, responses, responder_count, "
    "total_execution_time_ms, created_at"
)

_ENTRY_VALUES = "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
_CONVERSATION_VALUES = "(?, ?, ?, ?, ?, ?, ?, ?)"

_INSERT_ENTRY = f"INSERT INTO memory_entries ({_ENTRY_COLUMNS}) VALUES {_ENTRY_VALUES}"
_INSERT_CONVERSATION = (
    f"INSERT INTO conversations ({_CONVERSATION_COLUMNS}) VALUES {_CONVERSATION_VALUES}"
)
_IMPORT_ENTRY = f"INSERT OR IGNORE INTO memory_entries ({_ENTRY_COLUMNS}) VALUES {_ENTRY_VALUES}"
_IMPORT_CONVERSATION = (
    f"INSERT OR IGNORE INTO conversations ({_CONVERSATION_COLUMNS}) VALUES {_CONVERSATION_VALUES}"
)


def query_tokens(query: str) -> list[str]:
    """Lower-cased words of *query* longer than two characters."""
    tokens = []
    for word in query.lower().split():
        word = word.strip(string.punctuation)
        if len(word) > 2 and word not in tokens:
            tokens.append(word)
    return tokens


class MemoryStore:
    """Durable, queryable, two-tier memory per user.

    Construct one per process and pass it to its collaborators. Pass an
    explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).

    Args:
        db_path: SQLite file (default from settings).
        stm_ttl: Lifetime of short-term entries written by ``store_conversation``.
        stm_max_entries: Per-user cap on live short-term entries.
        clock: Callable returning the current UTC time.
    """

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        stm_ttl: timedelta | None = None,
        stm_max_entries: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db_path = db_path or settings.database_path
        self._stm_ttl = stm_ttl if stm_ttl is not None else settings.get_stm_ttl()
        self._stm_max_entries = (
            stm_max_entries if stm_max_entries is not None else settings.stm_max_entries
        )
        self._clock = clock or utcnow
        self._initialised = False
        # Entries vanish once no coroutine holds or awaits the lock.
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def stm_ttl(self) -> timedelta:
        return self._stm_ttl

    @property
    def stm_max_entries(self) -> int:
        return self._stm_max_entries

    def now(self) -> datetime:
        return self._clock()

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=5000")
        if not self._initialised:
            await db.execute(_CREATE_ENTRIES)
            await db.execute(_CREATE_ENTRIES_INDEX)
            await db.execute(_CREATE_CONVERSATIONS)
            await db.commit()
            self._initialised = True
        return db

    @asynccontextmanager
    async def _session(
        self, error_cls: type[Exception] = PersistenceFailed
    ) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection; driver errors are rolled back and re-raised as *error_cls*."""
        try:
            db = await self._connect()
        except (aiosqlite.Error, OSError) as exc:
            raise error_cls(f"Memory store unavailable: {exc}") from exc
        try:
            yield db
        except aiosqlite.Error as exc:
            with contextlib.suppress(aiosqlite.Error):
                await db.rollback()
            raise error_cls(f"Memory store operation failed: {exc}") from exc
        finally:
            await db.close()

    def _user_lock(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = self._user_locks[user_id] = asyncio.Lock()
        return lock

    async def _enforce_retention(self, db: aiosqlite.Connection, user_id: str) -> int:
        """Drop the user's expired short-term rows and cap the live remainder."""
        expired = await db.execute(
            "DELETE FROM memory_entries "
            "WHERE user_id = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (user_id, to_iso(self.now())),
        )
        excess = await db.execute(
            """
            DELETE FROM memory_entries WHERE id IN (
                SELECT id FROM memory_entries
                WHERE user_id = ? AND expires_at IS NOT NULL
                ORDER BY created_at DESC, rowid DESC
                LIMIT -1 OFFSET ?
            )
            """,
            (user_id, self._stm_max_entries),
        )
        removed = expired.rowcount + excess.rowcount
        if removed:
            logger.debug(
                "Retention for %s removed %d expired and %d excess entries",
                user_id,
                expired.rowcount,
                excess.rowcount,
            )
        return removed

    async def _select_entries(
        self,
        db: aiosqlite.Connection,
        user_id: str,
        *,
        short_term: bool | None = None,
        include_expired: bool = False,
        limit: int | None = None,
    ) -> list[MemoryEntry]:
        """Fetch a user's entries, most recent first."""
        clauses = ["user_id = ?"]
        params: list = [user_id]
        if short_term is True:
            clauses.append("expires_at IS NOT NULL")
        elif short_term is False:
            clauses.append("expires_at IS NULL")
        if not include_expired:
            clauses.append("(expires_at IS NULL OR expires_at > ?)")
            params.append(to_iso(self.now()))
        sql = (
            f"SELECT {_ENTRY_COLUMNS} FROM memory_entries WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at DESC, rowid DESC"
        )
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await db.execute(sql, tuple(params))
        rows = await cursor.fetchall()
        return [MemoryEntry.from_row(row) for row in rows]

    def _conversation_entries(self, result: ConversationResult) -> list[MemoryEntry]:
        """Derive the memory rows persisted alongside a conversation result."""
        now = self.now()
        expires_at = now + self._stm_ttl
        entries = [
            MemoryEntry(
                user_id=result.user_id,
                session_id=result.session_id,
                conversation_id=result.id,
                kind=MemoryKind.QUERY,
                content=result.model_dump_json(),
                metadata={
                    "conversation_id": result.id,
                    "query": result.query,
                    "created_at": to_iso(result.created_at),
                },
                created_at=now,
            ),
            MemoryEntry(
                user_id=result.user_id,
                session_id=result.session_id,
                conversation_id=result.id,
                kind=MemoryKind.QUERY,
                content=result.query,
                metadata={
                    "conversation_id": result.id,
                    "responder_count": result.responder_count,
                    "total_execution_time_ms": result.total_execution_time_ms,
                },
                created_at=now,
                expires_at=expires_at,
            ),
        ]
        for answer in result.responses:
            metadata = {
                "conversation_id": result.id,
                "responder_name": answer.responder_name,
                "confidence": answer.confidence,
                "execution_time_ms": answer.execution_time_ms,
            }
            if answer.error:
                metadata["error"] = answer.error
            entries.append(
                MemoryEntry(
                    user_id=result.user_id,
                    session_id=result.session_id,
                    conversation_id=result.id,
                    kind=MemoryKind.RESPONSE,
                    content=answer.text,
                    metadata=metadata,
                    responder_id=answer.responder_id,
                    relevance_score=answer.relevance_score,
                    created_at=now,
                    expires_at=expires_at,
                )
            )
        return entries

    # -- Writes ----------------------------------------------------------------

    async def append(self, user_id: str, entry: MemoryEntry) -> MemoryEntry:
        """Write one entry; short-term writes also apply expiry and the count cap."""
        if entry.user_id != user_id:
            msg = f"Entry belongs to {entry.user_id!r}, not {user_id!r}"
            raise ValueError(msg)

        async with self._user_lock(user_id), self._session() as db:
            await db.execute(_INSERT_ENTRY, entry.to_row())
            if entry.is_short_term:
                await self._enforce_retention(db, user_id)
            await db.commit()

        logger.debug(
            "Stored %s %s entry for %s",
            "STM" if entry.is_short_term else "LTM",
            entry.kind.value,
            user_id,
        )
        return entry

    async def store_conversation(self, result: ConversationResult) -> list[MemoryEntry]:
        """Persist a conversation result and its derived memory rows.

        All rows are written in one transaction: either every row lands or
        none does, and the failure surfaces as ``PersistenceFailed``.
        """
        entries = self._conversation_entries(result)
        async with self._user_lock(result.user_id), self._session() as db:
            for entry in entries:
                await db.execute(_INSERT_ENTRY, entry.to_row())
            await db.execute(_INSERT_CONVERSATION, result.to_row())
            await self._enforce_retention(db, result.user_id)
            await db.commit()

        logger.info(
            "Stored conversation %s for %s (%d responses, %d memory rows)",
            result.id,
            result.user_id,
            result.responder_count,
            len(entries),
        )
        return entries

    async def prune_expired(self, user_id: str | None = None) -> int:
        """Delete short-term entries whose expiry has passed. Returns the count."""
        sql = "DELETE FROM memory_entries WHERE expires_at IS NOT NULL AND expires_at <= ?"
        params: tuple = (to_iso(self.now()),)
        if user_id is not None:
            sql += " AND user_id = ?"
            params = (*params, user_id)
        async with self._session() as db:
            cursor = await db.execute(sql, params)
            await db.commit()
            removed = cursor.rowcount
        if removed:
            logger.info("Pruned %d expired short-term entries", removed)
        return removed

    # -- Reads -----------------------------------------------------------------

    async def get_relevant_context(
        self, user_id: str, query: str, limit: int | None = None
    ) -> list[MemoryEntry]:
        """Short-term entries sharing a word with *query*, most recent first.

        A query with no word longer than two characters returns the most
        recent entries unconditionally.
        """
        limit = settings.context_limit if limit is None else limit
        if limit <= 0:
            return []
        async with self._session(ContextFetchFailed) as db:
            entries = await self._select_entries(db, user_id, short_term=True)

        tokens = query_tokens(query)
        if not tokens:
            return entries[:limit]

        matched = []
        for entry in entries:
            content = entry.content.lower()
            if any(token in content for token in tokens):
                matched.append(entry)
                if len(matched) >= limit:
                    break
        return matched

    async def search(self, user_id: str, term: str) -> list[MemoryEntry]:
        """Case-insensitive substring search over content and metadata of both tiers."""
        needle = term.strip().lower()
        if not needle:
            return []
        async with self._session() as db:
            entries = await self._select_entries(db, user_id)
        return [
            entry
            for entry in entries
            if needle in entry.content.lower() or needle in json.dumps(entry.metadata).lower()
        ]

    async def get_conversation_history(
        self, user_id: str, limit: int = 10, offset: int = 0
    ) -> list[ConversationResult]:
        """Paginated conversation results, most recent first."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE user_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                (user_id, limit, offset),
            )
            rows = await cursor.fetchall()
        return [ConversationResult.from_row(row) for row in rows]

    async def get_conversation(self, conversation_id: str) -> ConversationResult | None:
        """Fetch one conversation result by ID, or None if not found."""
        async with self._session() as db:
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
        return ConversationResult.from_row(row) if row else None

    async def stats(self, user_id: str) -> MemoryStats:
        """Per-tier counts and oldest timestamps plus aggregate conversation stats."""
        now = to_iso(self.now())
        async with self._session() as db:
            cursor = await db.execute(
                """
                SELECT expires_at IS NULL AS long_term, kind, COUNT(*), MIN(created_at)
                FROM memory_entries
                WHERE user_id = ? AND (expires_at IS NULL OR expires_at > ?)
                GROUP BY long_term, kind
                """,
                (user_id, now),
            )
            tier_rows = await cursor.fetchall()
            cursor = await db.execute(
                "SELECT COUNT(*), AVG(total_execution_time_ms), AVG(responder_count) "
                "FROM conversations WHERE user_id = ?",
                (user_id,),
            )
            conv_row = await cursor.fetchone()

        stats = MemoryStats(user_id=user_id)
        for long_term, kind, count, oldest in tier_rows:
            tier = stats.long_term if long_term else stats.short_term
            tier.total += count
            if kind == MemoryKind.QUERY:
                tier.queries += count
            elif kind == MemoryKind.RESPONSE:
                tier.responses += count
            else:
                tier.contexts += count
            oldest_at = from_iso(oldest)
            if oldest_at and (tier.oldest is None or oldest_at < tier.oldest):
                tier.oldest = oldest_at

        count, avg_time, avg_responders = conv_row or (0, None, None)
        stats.conversations = ConversationStats(
            count=count or 0,
            avg_execution_time_ms=round(avg_time or 0.0, 2),
            avg_responders_per_query=round(avg_responders or 0.0, 2),
        )
        return stats

    # -- Privacy ---------------------------------------------------------------

    async def delete_all(self, user_id: str) -> dict[str, int]:
        """Remove every memory row and conversation owned by *user_id*."""
        async with self._user_lock(user_id), self._session() as db:
            entries = await db.execute("DELETE FROM memory_entries WHERE user_id = ?", (user_id,))
            conversations = await db.execute(
                "DELETE FROM conversations WHERE user_id = ?", (user_id,)
            )
            await db.commit()
            deleted = {"entries": entries.rowcount, "conversations": conversations.rowcount}
        logger.info(
            "Deleted all data for %s (%d entries, %d conversations)",
            user_id,
            deleted["entries"],
            deleted["conversations"],
        )
        return deleted

    async def export_all(self, user_id: str) -> UserExport:
        """Every row ``delete_all`` would remove, including not-yet-swept entries."""
        async with self._session() as db:
            entries = await self._select_entries(db, user_id, include_expired=True)
            cursor = await db.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE user_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (user_id,),
            )
            rows = await cursor.fetchall()
        return UserExport(
            user_id=user_id,
            exported_at=self.now(),
            short_term=[e for e in entries if e.is_short_term],
            long_term=[e for e in entries if e.is_long_term],
            conversations=[ConversationResult.from_row(row) for row in rows],
        )

    async def import_all(self, export: UserExport) -> int:
        """Write back an export. Rows whose ID already exists are skipped."""
        written = 0
        # Exports list rows newest first; replay oldest first so rowid order survives ties.
        entries = [*reversed(export.long_term), *reversed(export.short_term)]
        async with self._user_lock(export.user_id), self._session() as db:
            for entry in sorted(entries, key=lambda e: e.created_at):
                cursor = await db.execute(_IMPORT_ENTRY, entry.to_row())
                written += cursor.rowcount
            for result in sorted(reversed(export.conversations), key=lambda r: r.created_at):
                cursor = await db.execute(_IMPORT_CONVERSATION, result.to_row())
                written += cursor.rowcount
            await db.commit()
        logger.info("Imported %d rows for %s", written, export.user_id)
        return written
