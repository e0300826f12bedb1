"""Tests for the responder registry."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from wayfinder.errors import ResponderNotFound
from wayfinder.llm.generator import CannedGenerator
from wayfinder.responders.base import ResponderDescriptor
from wayfinder.responders.history import HistoryResponder
from wayfinder.responders.registry import (
    DEFAULT_DESCRIPTORS,
    ResponderRegistry,
    load_descriptors,
)
from wayfinder.responders.topical import ParkResponder, RiverResponder, ScenicResponder


@pytest.fixture
def reg() -> ResponderRegistry:
    """Default responders over a mocked store."""
    return ResponderRegistry.from_descriptors(DEFAULT_DESCRIPTORS, MagicMock(), CannedGenerator())


# -- from_descriptors ----------------------------------------------------------


def test_default_registry_variants(reg: ResponderRegistry) -> None:
    assert [type(r) for r in reg.all()] == [
        ScenicResponder,
        RiverResponder,
        ParkResponder,
        HistoryResponder,
    ]
    assert [r.id for r in reg.enabled()] == ["scenic", "river", "park", "history"]
    assert [r.priority for r in reg.all()] == [1, 2, 3, 4]


def test_search_topic_is_history_alias() -> None:
    descriptor = ResponderDescriptor(id="search", name="Search", topic_type="search")
    reg = ResponderRegistry.from_descriptors([descriptor], MagicMock(), CannedGenerator())
    assert isinstance(reg.get("search"), HistoryResponder)


def test_unknown_topic_type_rejected() -> None:
    descriptor = ResponderDescriptor(id="x", name="Desert", topic_type="desert")
    with pytest.raises(ValueError, match="Unknown topic type 'desert'"):
        ResponderRegistry.from_descriptors([descriptor], MagicMock(), CannedGenerator())


def test_disabled_descriptor_registered_but_not_enabled() -> None:
    descriptors = [d.model_copy(update={"enabled": d.id != "park"}) for d in DEFAULT_DESCRIPTORS]
    reg = ResponderRegistry.from_descriptors(descriptors, MagicMock(), CannedGenerator())

    assert "park" in reg
    assert len(reg) == 4
    assert [r.id for r in reg.enabled()] == ["scenic", "river", "history"]


# -- register / unregister / get -----------------------------------------------


def test_register_replaces_in_place(reg: ResponderRegistry) -> None:
    replacement = RiverResponder(
        DEFAULT_DESCRIPTORS[1].model_copy(update={"name": "Lakes"}), MagicMock(), CannedGenerator()
    )
    reg.register(replacement)

    assert reg.get("river") is replacement
    assert [r.id for r in reg.all()] == ["scenic", "river", "park", "history"]


def test_unregister(reg: ResponderRegistry) -> None:
    removed = reg.unregister("park")
    assert isinstance(removed, ParkResponder)
    assert reg.get("park") is None
    assert reg.unregister("park") is None


# -- set_enabled ---------------------------------------------------------------


def test_set_enabled_toggles(reg: ResponderRegistry) -> None:
    reg.set_enabled("scenic", False)
    assert "scenic" not in [r.id for r in reg.enabled()]
    assert reg.get("scenic").descriptor.enabled is False

    reg.set_enabled("scenic", True)
    assert reg.enabled()[0].id == "scenic"


def test_set_enabled_unknown(reg: ResponderRegistry) -> None:
    with pytest.raises(ResponderNotFound, match="Unknown responder: nope"):
        reg.set_enabled("nope", True)


# -- Runtime edits -------------------------------------------------------------


def test_update_rebuilds_in_place(reg: ResponderRegistry) -> None:
    old = reg.get("river")

    updated = reg.update("river", keywords=["Canal", "backwater"], priority=9)

    assert updated is not old
    assert isinstance(updated, RiverResponder)
    assert updated.keywords == ["canal", "backwater"]
    assert updated.priority == 9
    assert [r.id for r in reg.all()] == ["scenic", "river", "park", "history"]
    assert updated.score_relevance("kerala backwater canal") == 2


def test_update_system_prompt_and_enabled(reg: ResponderRegistry) -> None:
    reg.update("park", system_prompt="You know every park in Chennai.", enabled=False)

    park = reg.get("park")
    assert park.system_prompt == "You know every park in Chennai."
    assert "park" not in [r.id for r in reg.enabled()]


def test_update_topic_type_switches_variant(reg: ResponderRegistry) -> None:
    assert isinstance(reg.update("park", topic_type="search"), HistoryResponder)


def test_update_validates_changes(reg: ResponderRegistry) -> None:
    with pytest.raises(ValidationError):
        reg.update("river", priority="high")
    with pytest.raises(ValueError, match="Unknown topic type"):
        reg.update("river", topic_type="desert")
    with pytest.raises(ValueError, match="cannot be changed"):
        reg.update("river", id="lakes")
    assert reg.get("river").descriptor.topic_type == "river"


def test_update_unknown(reg: ResponderRegistry) -> None:
    with pytest.raises(ResponderNotFound):
        reg.update("nope", priority=2)


def test_add_and_reload(reg: ResponderRegistry) -> None:
    lakes = ResponderDescriptor(id="lakes", name="Lakes", topic_type="river", keywords=["lake"])

    reg.add(lakes)
    with pytest.raises(ValueError, match="already registered"):
        reg.add(lakes)
    assert [r.id for r in reg.all()][-1] == "lakes"

    reg.reload([lakes, DEFAULT_DESCRIPTORS[0]])
    assert [r.id for r in reg.all()] == ["lakes", "scenic"]


def test_bare_registry_cannot_build() -> None:
    with pytest.raises(RuntimeError):
        ResponderRegistry().build(DEFAULT_DESCRIPTORS[0])


# -- stats / descriptors -------------------------------------------------------


def test_stats(reg: ResponderRegistry) -> None:
    reg.set_enabled("history", False)

    stats = reg.stats()

    assert stats["total"] == 4
    assert stats["enabled"] == 3
    assert stats["responders"][0] == {
        "id": "scenic",
        "name": "Scenic Guide",
        "topic_type": "scenic",
        "enabled": True,
        "priority": 1,
        "capabilities": 4,
    }


def test_descriptors(reg: ResponderRegistry) -> None:
    assert reg.descriptors() == list(DEFAULT_DESCRIPTORS)


# -- load_descriptors ----------------------------------------------------------


def test_load_descriptors(tmp_path: Path) -> None:
    path = tmp_path / "responders.json"
    path.write_text(
        json.dumps(
            [
                {
                    "id": "lakes",
                    "name": "Lake Guide",
                    "topic_type": "river",
                    "keywords": ["Lake", "pond"],
                    "priority": 5,
                    "enabled": False,
                }
            ]
        )
    )

    [descriptor] = load_descriptors(path)

    assert descriptor.id == "lakes"
    assert descriptor.keywords == ["lake", "pond"]
    assert descriptor.enabled is False


def test_load_descriptors_validates(tmp_path: Path) -> None:
    path = tmp_path / "responders.json"
    path.write_text(json.dumps([{"id": "broken"}]))
    with pytest.raises(ValidationError):
        load_descriptors(path)
