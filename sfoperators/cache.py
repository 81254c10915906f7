"""
Relationship cache - process-local back references read through to their source.

The cache is owned by one operator instance and lives as long as it does.
The source stays authoritative: a miss calls the loader (which reads the
store or a backend) and populates the cache, an eviction is synchronous,
and nothing survives a restart.
"""

import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RelationshipCache:
    """
    Cache one value per id, loading misses from the source of truth.

    Usage:
        names = RelationshipCache(loader=operator.find_deployment_name)
        name = await names.get(instance_id)
    """

    def __init__(self, loader: Callable[[str], Awaitable[Optional[str]]]):
        self.loader = loader
        self._entries: dict[str, str] = {}

    async def get(self, ident: str) -> Optional[str]:
        """Return the cached value, reading through to the source on a miss."""
        if ident in self._entries:
            return self._entries[ident]
        value = await self.loader(ident)
        if value is not None:
            logger.debug(f"Loaded {ident} -> {value}")
            self._entries[ident] = value
        return value

    def put(self, ident: str, value: str) -> None:
        self._entries[ident] = value

    def evict(self, ident: str) -> None:
        self._entries.pop(ident, None)

    def __contains__(self, ident: str) -> bool:
        return ident in self._entries

    def __len__(self) -> int:
        return len(self._entries)
