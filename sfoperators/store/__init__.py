"""
Resource store client contract and the in-memory store.
"""

from sfoperators.store.base import ResourceStoreClient, WatchEvent, WatchEventType
from sfoperators.store.memory import InMemoryResourceStore
from sfoperators.store.selectors import LabelSelector, state_selector

__all__ = [
    "InMemoryResourceStore",
    "LabelSelector",
    "ResourceStoreClient",
    "WatchEvent",
    "WatchEventType",
    "state_selector",
]
