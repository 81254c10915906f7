"""
In-memory resource store.

Implements the full ResourceStoreClient contract in process: optimistic
versions, the state label, selector filtering and resumable watch streams
backed by an event log. The log keeps the last ``history`` events; a watch
resumed from an older version fails with ExpiredError and must relist.
Used by tests and by the CLI local mode.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from sfoperators.constants import STATE_LABEL, WATCH_EVENT_HISTORY
from sfoperators.errors import ConflictError, ExpiredError, InvalidTransitionError, NotFoundError
from sfoperators.schemas import Resource, ResourceKey, is_valid_transition
from sfoperators.store.base import ResourceStoreClient, WatchEvent, WatchEventType
from sfoperators.store.selectors import LabelSelector
from sfoperators.utils import utcnow

logger = logging.getLogger(__name__)


class InMemoryResourceStore(ResourceStoreClient):
    """
    Resource store held in a dict.

    Every write bumps a global revision and appends one event to the log,
    so event ``n`` carries resource version ``n`` and a watch resumed from a
    version replays exactly the events it has not seen.
    """

    def __init__(self, clock: Callable = utcnow, history: int = WATCH_EVENT_HISTORY):
        if history < 1:
            raise ValueError(f"history must be >= 1, got {history}")
        self._clock = clock
        self._history = history
        self._resources: dict[ResourceKey, Resource] = {}
        self._events: list[WatchEvent] = []
        # Resource version of the newest event dropped from the log
        self._trimmed = 0
        self._revision = 0
        self._generation = 0
        self._changed = asyncio.Condition()

    @property
    def revision(self) -> int:
        return self._revision

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create_resource(self, resource: Resource) -> Resource:
        if resource.key in self._resources:
            raise ConflictError(f"Resource {resource.key} already exists", str(resource.key))
        stored = resource.copy()
        stored.created_at = self._clock()
        await self._commit(WatchEventType.ADDED, stored)
        return stored.copy()

    async def get_resource(self, key: ResourceKey) -> Resource:
        return self._get(key).copy()

    async def update_resource(self, resource: Resource) -> Resource:
        current = self._get(resource.key)
        if resource.resource_version != current.resource_version:
            raise ConflictError(
                f"Resource {resource.key} was modified: version "
                f"{resource.resource_version} is stale (current {current.resource_version})",
                str(resource.key),
            )
        if (
            resource.status.state != current.status.state
            and not is_valid_transition(current.status.state, resource.status.state)
        ):
            raise InvalidTransitionError(
                f"Resource {resource.key}: invalid transition "
                f"{current.status.state.value} -> {resource.status.state.value}"
            )
        stored = resource.copy()
        stored.created_at = current.created_at
        await self._commit(WatchEventType.MODIFIED, stored)
        return stored.copy()

    async def patch_resource(self, key: ResourceKey, operator_metadata: dict[str, Any]) -> Resource:
        stored = self._get(key).copy()
        for name, value in operator_metadata.items():
            if value is None:
                stored.operator_metadata.pop(name, None)
            else:
                stored.operator_metadata[name] = value
        await self._commit(WatchEventType.MODIFIED, stored)
        return stored.copy()

    async def delete_resource(self, key: ResourceKey) -> None:
        stored = self._get(key)
        del self._resources[key]
        self._revision += 1
        deleted = stored.copy()
        deleted.resource_version = self._revision
        self._append(WatchEvent(WatchEventType.DELETED, deleted, self._revision))
        await self._notify()

    async def list_resources(
        self,
        group: str,
        type: str,
        label_selector: Optional[str] = None,
    ) -> list[Resource]:
        selector = LabelSelector.parse(label_selector)
        return [
            resource.copy()
            for key, resource in sorted(self._resources.items())
            if key.group == group and key.type == type and selector.matches(resource.labels)
        ]

    # -------------------------------------------------------------------------
    # Watch
    # -------------------------------------------------------------------------

    async def watch(
        self,
        group: str,
        type: str,
        label_selector: Optional[str] = None,
        resource_version: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AsyncIterator[WatchEvent]:
        selector = LabelSelector.parse(label_selector)
        generation = self._generation
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds else None

        def wanted(resource: Resource) -> bool:
            return (
                resource.key.group == group
                and resource.key.type == type
                and selector.matches(resource.labels)
            )

        if resource_version is None:
            cursor = self._revision
            initial = [r for r in self._resources.values() if wanted(r)]
            for resource in sorted(initial, key=lambda r: r.resource_version):
                yield WatchEvent(WatchEventType.ADDED, resource.copy(), resource.resource_version)
        else:
            cursor = resource_version

        while True:
            if cursor < self._trimmed:
                raise ExpiredError(
                    f"Resource version {cursor} is too old, the oldest kept is {self._trimmed + 1}"
                )
            for event in self._events[cursor - self._trimmed:]:
                cursor = event.resource_version
                if wanted(event.resource):
                    yield WatchEvent(event.type, event.resource.copy(), event.resource_version)
            if generation != self._generation:
                return
            remaining = deadline - loop.time() if deadline is not None else None
            if remaining is not None and remaining <= 0:
                return
            async with self._changed:
                if self._revision == cursor and generation == self._generation:
                    try:
                        await asyncio.wait_for(self._changed.wait(), remaining)
                    except asyncio.TimeoutError:
                        return

    async def disconnect_watchers(self) -> None:
        """Close every open watch stream, as a server-side timeout would."""
        self._generation += 1
        await self._notify()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get(self, key: ResourceKey) -> Resource:
        try:
            return self._resources[key]
        except KeyError:
            raise NotFoundError(f"Resource {key} not found", str(key)) from None

    async def _commit(self, event_type: WatchEventType, resource: Resource) -> None:
        self._revision += 1
        resource.resource_version = self._revision
        resource.labels[STATE_LABEL] = resource.status.state.value
        self._resources[resource.key] = resource
        self._append(WatchEvent(event_type, resource.copy(), self._revision))
        logger.debug(
            f"{event_type.value} {resource.key} -> {resource.status.state.value}",
            extra={"resource": str(resource.key), "event": event_type.value},
        )
        await self._notify()

    async def _notify(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def _append(self, event: WatchEvent) -> None:
        self._events.append(event)
        overflow = len(self._events) - self._history
        if overflow > 0:
            del self._events[:overflow]
            self._trimmed += overflow
