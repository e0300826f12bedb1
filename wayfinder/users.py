"""UserService — users, sessions and preferences on aiosqlite."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

import aiosqlite
from pydantic import BaseModel, Field, field_validator

from wayfinder.config import settings
from wayfinder.errors import InvalidSession, UserNotFound
from wayfinder.memory.models import (
    MemoryEntry,
    MemoryKind,
    UserExport,
    as_utc,
    from_iso,
    to_iso,
    utcnow,
)

if TYPE_CHECKING:
    from pathlib import Path

    from wayfinder.memory.store import MemoryStore

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    session_id TEXT NOT NULL,
    preferences TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    last_active_at TEXT NOT NULL
)
"""

_USER_COLUMNS = "id, name, session_id, preferences, created_at, last_active_at"


def default_preferences() -> dict[str, Any]:
    return {"preferred_responders": [], "verbosity": "detailed", "locale": "en"}


def new_user_id() -> str:
    return f"user-{uuid.uuid4().hex[:12]}"


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


class User(BaseModel):
    id: str = Field(default_factory=new_user_id)
    name: str = ""
    session_id: str = Field(default_factory=new_session_id)
    preferences: dict[str, Any] = Field(default_factory=default_preferences)
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "last_active_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_row(self) -> tuple:
        return (
            self.id,
            self.name,
            self.session_id,
            json.dumps(self.preferences),
            to_iso(self.created_at),
            to_iso(self.last_active_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> User:
        return cls(
            id=row[0],
            name=row[1],
            session_id=row[2],
            preferences=json.loads(row[3]),
            created_at=from_iso(row[4]),
            last_active_at=from_iso(row[5]),
        )


class UserDataExport(BaseModel):
    """A user record together with everything the memory store holds for it."""

    user: User
    memory: UserExport


class UserService:
    """Creates users, tracks their single active session and stores preferences.

    Account events are written to the user's long-term memory. Pass an
    explicit *db_path* for test isolation.
    """

    def __init__(self, memory: MemoryStore, db_path: Path | None = None) -> None:
        self._memory = memory
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def _fetch(self, db: aiosqlite.Connection, user_id: str) -> User | None:
        cursor = await db.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return User.from_row(row) if row else None

    async def _remember(self, user: User, content: str, metadata: dict[str, Any]) -> None:
        await self._memory.append(
            user.id,
            MemoryEntry(
                user_id=user.id,
                session_id=user.session_id,
                kind=MemoryKind.CONTEXT,
                content=content,
                metadata=metadata,
            ),
        )

    # -- Users -----------------------------------------------------------------

    async def create_user(self, name: str | None = None) -> User:
        user = User()
        user.name = name or f"User {user.id[-6:]}"
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)", user.to_row()
            )
            await db.commit()
        finally:
            await db.close()

        await self._remember(
            user, "User account created", {"action": "user_created", "name": user.name}
        )
        logger.info("Created user %s with session %s", user.id, user.session_id)
        return user

    async def get_user(self, user_id: str) -> User | None:
        """Fetch a user and mark them active. None if unknown."""
        db = await self._connect()
        try:
            user = await self._fetch(db, user_id)
            if user is None:
                return None
            user.last_active_at = utcnow()
            await db.execute(
                "UPDATE users SET last_active_at = ? WHERE id = ?",
                (to_iso(user.last_active_at), user_id),
            )
            await db.commit()
            return user
        finally:
            await db.close()

    async def update_preferences(self, user_id: str, **changes: Any) -> User:
        db = await self._connect()
        try:
            user = await self._fetch(db, user_id)
            if user is None:
                raise UserNotFound(user_id)
            user.preferences = {**user.preferences, **changes}
            user.last_active_at = utcnow()
            await db.execute(
                "UPDATE users SET preferences = ?, last_active_at = ? WHERE id = ?",
                (json.dumps(user.preferences), to_iso(user.last_active_at), user_id),
            )
            await db.commit()
        finally:
            await db.close()

        await self._remember(
            user,
            "User preferences updated",
            {"action": "preferences_updated", "preferences": changes},
        )
        logger.info("Updated preferences for %s: %s", user_id, sorted(changes))
        return user

    async def delete_user(self, user_id: str) -> dict[str, int]:
        """Remove the user's memory, conversations and account row."""
        deleted = await self._memory.delete_all(user_id)
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM users WHERE id = ?", (user_id,))
            await db.commit()
            deleted["users"] = cursor.rowcount
        finally:
            await db.close()
        logger.info("Deleted user %s", user_id)
        return deleted

    async def export_user(self, user_id: str) -> UserDataExport:
        db = await self._connect()
        try:
            user = await self._fetch(db, user_id)
        finally:
            await db.close()
        if user is None:
            raise UserNotFound(user_id)
        return UserDataExport(user=user, memory=await self._memory.export_all(user_id))

    # -- Sessions --------------------------------------------------------------

    async def refresh_session(self, user_id: str) -> str:
        """Issue a new session id. The previous one stops validating."""
        session_id = new_session_id()
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE users SET session_id = ?, last_active_at = ? WHERE id = ?",
                (session_id, to_iso(utcnow()), user_id),
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise UserNotFound(user_id)
        finally:
            await db.close()
        logger.info("Refreshed session for %s", user_id)
        return session_id

    async def validate_session(self, user_id: str, session_id: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT session_id FROM users WHERE id = ?", (user_id,))
            row = await cursor.fetchone()
        finally:
            await db.close()
        return row is not None and row[0] == session_id

    async def require_session(self, user_id: str, session_id: str) -> None:
        if not await self.validate_session(user_id, session_id):
            raise InvalidSession(f"Session {session_id} is not active for {user_id}")
