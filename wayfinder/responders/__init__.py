"""Topic responders and the registry that holds them."""

from wayfinder.responders.base import Reply, Responder, ResponderDescriptor
from wayfinder.responders.catalog import ResponderCatalog
from wayfinder.responders.history import HistoryResponder
from wayfinder.responders.registry import (
    DEFAULT_DESCRIPTORS,
    ResponderRegistry,
    load_descriptors,
)
from wayfinder.responders.topical import (
    ParkResponder,
    RiverResponder,
    ScenicResponder,
    TopicalResponder,
)

__all__ = [
    "DEFAULT_DESCRIPTORS",
    "HistoryResponder",
    "ParkResponder",
    "Reply",
    "Responder",
    "ResponderCatalog",
    "ResponderDescriptor",
    "ResponderRegistry",
    "RiverResponder",
    "ScenicResponder",
    "TopicalResponder",
    "load_descriptors",
]
