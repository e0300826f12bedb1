"""WayfinderApp — wires memory, responders, router and orchestrator together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from wayfinder.config import Settings, settings
from wayfinder.errors import UserNotFound
from wayfinder.llm.generator import build_generator
from wayfinder.memory.store import MemoryStore
from wayfinder.memory.sweeper import ExpirySweeper
from wayfinder.orchestrator import Orchestrator
from wayfinder.responders.catalog import ResponderCatalog
from wayfinder.responders.registry import (
    DEFAULT_DESCRIPTORS,
    ResponderRegistry,
    load_descriptors,
)
from wayfinder.router import Router
from wayfinder.users import UserService

if TYPE_CHECKING:
    from wayfinder.llm.generator import ContentGenerator
    from wayfinder.memory.models import ConversationResult
    from wayfinder.responders.base import Responder, ResponderDescriptor

logger = logging.getLogger(__name__)


class WayfinderApp:
    """Owns every long-lived component for one process.

    Use ``WayfinderApp.create()`` to build the default wiring, then
    ``start()``/``stop()`` or ``async with`` around request handling.
    """

    def __init__(
        self,
        *,
        config: Settings,
        memory: MemoryStore,
        users: UserService,
        registry: ResponderRegistry,
        catalog: ResponderCatalog,
        router: Router,
        orchestrator: Orchestrator,
        sweeper: ExpirySweeper,
    ) -> None:
        self.config = config
        self.memory = memory
        self.users = users
        self.registry = registry
        self.catalog = catalog
        self.router = router
        self.orchestrator = orchestrator
        self.sweeper = sweeper

    @classmethod
    def create(
        cls,
        config: Settings | None = None,
        *,
        generator: ContentGenerator | None = None,
    ) -> WayfinderApp:
        config = config or settings
        memory = MemoryStore(
            config.database_path,
            stm_ttl=config.get_stm_ttl(),
            stm_max_entries=config.stm_max_entries,
        )
        descriptors = (
            load_descriptors(config.responders_file)
            if config.responders_file
            else list(DEFAULT_DESCRIPTORS)
        )
        registry = ResponderRegistry.from_descriptors(
            descriptors, memory, generator or build_generator(config)
        )
        router = Router(
            registry,
            default_responder_id=config.default_responder_id,
            history_responder_id=config.history_responder_id,
        )
        return cls(
            config=config,
            memory=memory,
            users=UserService(memory, config.database_path),
            registry=registry,
            catalog=ResponderCatalog(config.database_path),
            router=router,
            orchestrator=Orchestrator(router, memory, config=config),
            sweeper=ExpirySweeper(memory, config.sweep_interval_minutes),
        )

    async def start(self) -> None:
        if not self.config.responders_file:
            await self.reload_responders()
        await self.sweeper.start()
        logger.info(
            "Wayfinder started with %d responder(s), database %s",
            len(self.registry.enabled()),
            self.config.database_path,
        )

    async def stop(self) -> None:
        await self.sweeper.stop()
        logger.info("Wayfinder stopped")

    async def __aenter__(self) -> WayfinderApp:
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def ask(
        self,
        query: str,
        *,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> ConversationResult:
        """Process *query* for a user, creating one when no id is given."""
        if user_id is None:
            user = await self.users.create_user()
        else:
            user = await self.users.get_user(user_id)
            if user is None:
                raise UserNotFound(user_id)
        if session_id is None:
            session_id = user.session_id
        else:
            await self.users.require_session(user.id, session_id)
        return await self.orchestrator.process_query(query, user.id, session_id)

    # -- Responder catalog -----------------------------------------------------

    async def reload_responders(self) -> None:
        """Rebuild the registry from the catalog, seeding it on first run.

        A configured ``responders_file`` is read at startup instead; edits made
        through the methods below are still saved to the catalog.
        """
        if await self.catalog.seed(self.registry.descriptors()):
            return
        self.registry.reload(await self.catalog.load())

    async def add_responder(self, descriptor: ResponderDescriptor) -> Responder:
        responder = self.registry.add(descriptor)
        await self.catalog.save(responder.descriptor)
        return responder

    async def update_responder(self, responder_id: str, **changes: Any) -> Responder:
        responder = self.registry.update(responder_id, **changes)
        await self.catalog.save(responder.descriptor)
        return responder

    async def remove_responder(self, responder_id: str) -> bool:
        removed = self.registry.unregister(responder_id) is not None
        return await self.catalog.delete(responder_id) or removed
