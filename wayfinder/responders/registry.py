"""Responder registry: the catalog of topic specialists available to the router."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import TypeAdapter

from wayfinder.errors import ResponderNotFound
from wayfinder.responders.base import Responder, ResponderDescriptor
from wayfinder.responders.history import HistoryResponder
from wayfinder.responders.topical import ParkResponder, RiverResponder, ScenicResponder

if TYPE_CHECKING:
    from collections.abc import Iterable

    from wayfinder.llm.generator import ContentGenerator
    from wayfinder.memory.store import MemoryStore

logger = logging.getLogger(__name__)

# topic_type -> variant. "search" is accepted as an alias for history.
VARIANTS: dict[str, type[Responder]] = {
    "scenic": ScenicResponder,
    "river": RiverResponder,
    "park": ParkResponder,
    "history": HistoryResponder,
    "search": HistoryResponder,
}

DEFAULT_DESCRIPTORS: tuple[ResponderDescriptor, ...] = (
    ResponderDescriptor(
        id="scenic",
        name="Scenic Guide",
        topic_type="scenic",
        description="Specializes in scenic locations, viewpoints and tourist attractions",
        capabilities=[
            "location_search",
            "scenic_recommendations",
            "tourism_info",
            "photography_spots",
        ],
        keywords=[
            "scenic",
            "beautiful",
            "view",
            "tourist",
            "attraction",
            "place",
            "visit",
            "sightseeing",
            "landscape",
            "mountain",
            "hill",
            "sunset",
            "sunrise",
            "photography",
        ],
        priority=1,
    ),
    ResponderDescriptor(
        id="river",
        name="River Guide",
        topic_type="river",
        description="Expert in rivers, lakes, waterfalls and aquatic activities",
        capabilities=[
            "water_bodies",
            "river_info",
            "aquatic_activities",
            "fishing_spots",
            "water_sports",
        ],
        keywords=[
            "river",
            "water",
            "lake",
            "stream",
            "waterfall",
            "aquatic",
            "fishing",
            "boating",
            "swimming",
            "dam",
            "reservoir",
            "creek",
            "pond",
        ],
        priority=2,
    ),
    ResponderDescriptor(
        id="park",
        name="Park Guide",
        topic_type="park",
        description="Handles parks, gardens, recreational areas and outdoor activities",
        capabilities=["parks", "recreation", "outdoor_activities", "facilities", "family_spots"],
        keywords=[
            "park",
            "playground",
            "recreation",
            "outdoor",
            "picnic",
            "garden",
            "trail",
            "hiking",
            "walking",
            "family",
            "children",
            "sports",
            "camping",
        ],
        priority=3,
    ),
    ResponderDescriptor(
        id="history",
        name="History Search",
        topic_type="history",
        description="Searches through user history and provides contextual information",
        capabilities=["memory_search", "historical_data", "context_retrieval", "pattern_analysis"],
        keywords=[
            "past",
            "history",
            "previous",
            "remember",
            "before",
            "earlier",
            "search",
            "find",
            "show me my",
        ],
        priority=4,
    ),
)

_descriptor_list = TypeAdapter(list[ResponderDescriptor])


def load_descriptors(path: str | Path) -> list[ResponderDescriptor]:
    """Read a JSON list of responder descriptors."""
    raw = Path(path).read_text(encoding="utf-8")
    descriptors = _descriptor_list.validate_json(raw)
    logger.info("Loaded %d responder descriptors from %s", len(descriptors), path)
    return descriptors


class ResponderRegistry:
    """Responder instances keyed by id, in registration order.

    Build one at startup and pass it to the router. Re-registering an id
    replaces the instance but keeps its original position. A registry built
    with a memory store and generator can also build responders from
    descriptors at runtime (``add``, ``update``, ``reload``).
    """

    def __init__(
        self,
        memory: MemoryStore | None = None,
        generator: ContentGenerator | None = None,
    ) -> None:
        self._responders: dict[str, Responder] = {}
        self._memory = memory
        self._generator = generator

    @classmethod
    def from_descriptors(
        cls,
        descriptors: Iterable[ResponderDescriptor],
        memory: MemoryStore,
        generator: ContentGenerator,
    ) -> ResponderRegistry:
        registry = cls(memory, generator)
        for descriptor in descriptors:
            registry.register(registry.build(descriptor))
        return registry

    def build(self, descriptor: ResponderDescriptor) -> Responder:
        """Instantiate the variant for *descriptor*'s topic type."""
        if self._memory is None or self._generator is None:
            msg = "Registry has no memory store or generator to build responders with"
            raise RuntimeError(msg)
        variant = VARIANTS.get(descriptor.topic_type)
        if variant is None:
            msg = f"Unknown topic type {descriptor.topic_type!r} for responder {descriptor.id!r}"
            raise ValueError(msg)
        return variant(descriptor, self._memory, self._generator)

    def register(self, responder: Responder) -> None:
        self._responders[responder.id] = responder
        logger.info(
            "Registered responder %s (%s)%s",
            responder.id,
            type(responder).__name__,
            "" if responder.enabled else " [disabled]",
        )

    def add(self, descriptor: ResponderDescriptor) -> Responder:
        if descriptor.id in self._responders:
            msg = f"Responder already registered: {descriptor.id}"
            raise ValueError(msg)
        responder = self.build(descriptor)
        self.register(responder)
        return responder

    def update(self, responder_id: str, **changes: Any) -> Responder:
        """Re-validate the descriptor with *changes* and rebuild its responder.

        The responder keeps its position. Changing the id is not allowed.
        """
        current = self._responders.get(responder_id)
        if current is None:
            raise ResponderNotFound(responder_id)
        if changes.get("id", responder_id) != responder_id:
            msg = "Responder id cannot be changed"
            raise ValueError(msg)
        descriptor = ResponderDescriptor.model_validate(
            {**current.descriptor.model_dump(), **changes}
        )
        responder = self.build(descriptor)
        self._responders[responder_id] = responder
        logger.info("Updated responder %s (%s)", responder_id, ", ".join(sorted(changes)))
        return responder

    def reload(self, descriptors: Iterable[ResponderDescriptor]) -> None:
        """Replace every responder with ones built from *descriptors*."""
        rebuilt = {d.id: self.build(d) for d in descriptors}
        self._responders = rebuilt
        logger.info("Reloaded %d responder(s)", len(rebuilt))

    def unregister(self, responder_id: str) -> Responder | None:
        return self._responders.pop(responder_id, None)

    def get(self, responder_id: str) -> Responder | None:
        return self._responders.get(responder_id)

    def __contains__(self, responder_id: str) -> bool:
        return responder_id in self._responders

    def __len__(self) -> int:
        return len(self._responders)

    def all(self) -> list[Responder]:
        return list(self._responders.values())

    def enabled(self) -> list[Responder]:
        """Enabled responders in registration order."""
        return [r for r in self._responders.values() if r.enabled]

    def descriptors(self) -> list[ResponderDescriptor]:
        return [r.descriptor for r in self._responders.values()]

    def set_enabled(self, responder_id: str, enabled: bool) -> None:
        responder = self._responders.get(responder_id)
        if responder is None:
            raise ResponderNotFound(responder_id)
        responder.descriptor = responder.descriptor.model_copy(update={"enabled": enabled})
        logger.info("Responder %s %s", responder_id, "enabled" if enabled else "disabled")

    def stats(self) -> dict[str, Any]:
        responders = self.all()
        return {
            "total": len(responders),
            "enabled": sum(1 for r in responders if r.enabled),
            "responders": [
                {
                    "id": r.id,
                    "name": r.name,
                    "topic_type": r.descriptor.topic_type,
                    "enabled": r.enabled,
                    "priority": r.priority,
                    "capabilities": len(r.descriptor.capabilities),
                }
                for r in responders
            ],
        }
