"""ResponderCatalog — persisted responder descriptors on aiosqlite."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import aiosqlite

from wayfinder.config import settings
from wayfinder.memory.models import to_iso, utcnow
from wayfinder.responders.base import ResponderDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS responders (
    id TEXT PRIMARY KEY,
    position INTEGER NOT NULL,
    descriptor TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class ResponderCatalog:
    """Descriptor rows in registration order.

    Saving an existing id rewrites the row in place, so it keeps its position.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def load(self) -> list[ResponderDescriptor]:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT descriptor FROM responders ORDER BY position, id")
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [ResponderDescriptor.model_validate_json(row[0]) for row in rows]

    async def save(self, descriptor: ResponderDescriptor) -> None:
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO responders (id, position, descriptor, updated_at)
                VALUES (?, (SELECT COALESCE(MAX(position), -1) + 1 FROM responders), ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    descriptor = excluded.descriptor,
                    updated_at = excluded.updated_at
                """,
                (descriptor.id, descriptor.model_dump_json(), to_iso(utcnow())),
            )
            await db.commit()
        finally:
            await db.close()
        logger.debug("Saved responder descriptor %s", descriptor.id)

    async def seed(self, descriptors: Iterable[ResponderDescriptor]) -> bool:
        """Store *descriptors* if the catalog is empty. Returns True if seeded."""
        if await self.load():
            return False
        for descriptor in descriptors:
            await self.save(descriptor)
        logger.info("Seeded responder catalog")
        return True

    async def delete(self, responder_id: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM responders WHERE id = ?", (responder_id,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()
