"""Tests for Router — responder selection and ranking."""

from unittest.mock import MagicMock

import pytest

from wayfinder.errors import NoResponderAvailable
from wayfinder.llm.generator import CannedGenerator
from wayfinder.responders.base import ResponderDescriptor
from wayfinder.responders.registry import DEFAULT_DESCRIPTORS, ResponderRegistry
from wayfinder.router import Router, has_retrospective_intent


def _registry(*disabled: str, extra: list[ResponderDescriptor] | None = None):
    descriptors = [
        d.model_copy(update={"enabled": d.id not in disabled}) for d in DEFAULT_DESCRIPTORS
    ]
    descriptors.extend(extra or [])
    return ResponderRegistry.from_descriptors(descriptors, MagicMock(), CannedGenerator())


def _route(query: str, *disabled: str, **kwargs) -> list[tuple[str, int]]:
    router = Router(_registry(*disabled), **kwargs)
    return [(r.responder_id, r.relevance_score) for r in router.route(query)]


# -- Scoring and ranking -------------------------------------------------------


def test_rivers_near_mountains() -> None:
    assert _route("Find rivers near mountain regions") == [
        ("river", 3),
        ("scenic", 1),
        ("history", 1),
    ]


def test_ties_break_by_priority() -> None:
    # scenic ("view") and park ("garden") both score 1; scenic has priority 1.
    routed = _route("garden view")
    assert [rid for rid, _ in routed] == ["scenic", "park", "history"]


def test_ties_break_by_insertion_order() -> None:
    twin = ResponderDescriptor(
        id="lakes", name="Lakes", topic_type="river", keywords=["lake"], priority=2
    )
    router = Router(_registry(extra=[twin]))
    routed = [r.responder_id for r in router.route("lake")]
    assert routed == ["river", "lakes", "history"]


def test_routing_is_deterministic() -> None:
    router = Router(_registry())
    query = "scenic waterfall hike in a park"
    first = [(r.responder_id, r.relevance_score) for r in router.route(query)]
    for _ in range(5):
        assert [(r.responder_id, r.relevance_score) for r in router.route(query)] == first


def test_scores_clamped_to_ten() -> None:
    many = ResponderDescriptor(
        id="many", name="Many", topic_type="park", keywords=[f"k{i}" for i in range(15)]
    )
    router = Router(_registry(extra=[many]))
    query = " ".join(f"k{i}" for i in range(15))
    routed = {r.responder_id: r.relevance_score for r in router.route(query)}
    assert routed["many"] == 10


# -- History inclusion ---------------------------------------------------------


@pytest.mark.parametrize("query", ["Do you remember?", "my past", "what did I ask earlier"])
def test_retrospective_query_includes_history(query: str) -> None:
    assert "history" in [rid for rid, _ in _route(query)]


def test_remember_with_topical_match() -> None:
    routed = _route("Do you remember that lovely park?")
    assert routed == [("park", 3), ("history", 1)]


def test_history_forced_when_another_matches() -> None:
    assert _route("best picnic spots") == [("park", 1), ("history", 1)]


def test_history_keeps_raw_score() -> None:
    routed = dict(_route("show me my past searches"))
    assert routed == {"history": 3}


def test_has_retrospective_intent() -> None:
    assert has_retrospective_intent("Search for lakes")
    assert not has_retrospective_intent("lakes nearby")


# -- Fallback ------------------------------------------------------------------


def test_off_topic_query_uses_default() -> None:
    assert _route("xyz qqq") == [("scenic", 1)]


def test_empty_query_uses_default() -> None:
    assert _route("") == [("scenic", 1)]


def test_configured_default() -> None:
    assert _route("xyz", default_responder_id="park") == [("park", 1)]


def test_disabled_default_falls_back_to_priority() -> None:
    assert _route("xyz", "scenic") == [("river", 1)]


def test_history_only_registry_falls_back_to_history() -> None:
    assert _route("xyz", "scenic", "river", "park") == [("history", 1)]


def test_no_enabled_responders() -> None:
    with pytest.raises(NoResponderAvailable):
        _route("rivers", "scenic", "river", "park", "history")


def test_disabled_responders_never_routed() -> None:
    assert "river" not in [rid for rid, _ in _route("river lake", "river")]
