"""
ResourceStoreClient - the contract operators use to talk to the resource store.

The store is the single source of truth. The engine needs:
- create / get / get status / delete
- optimistic update (status, options and labels) failing with ConflictError
  when the caller's resource version is stale
- merge patch of the operator metadata side-channel
- list and watch filtered by label selector; watch streams may be closed by
  the server at any time and are resumed from the last seen resource version
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Optional

from sfoperators.schemas import Resource, ResourceKey, ResourceStatus


class WatchEventType(str, Enum):
    """Kind of change delivered by a watch stream."""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"


@dataclass(frozen=True)
class WatchEvent:
    """
    A change notification.

    Attributes:
        type: Kind of change
        resource: Resource after the change (None for bookmarks)
        resource_version: Store revision to resume the watch from
    """
    type: WatchEventType
    resource: Optional[Resource]
    resource_version: int


class ResourceStoreClient(ABC):
    """
    Abstract client of the resource store.

    Every method returns copies: mutating a returned Resource never changes
    stored state until it is written back with update_resource.
    """

    @abstractmethod
    async def create_resource(self, resource: Resource) -> Resource:
        """
        Create a new resource.

        Args:
            resource: Resource to create (resource_version is ignored)

        Returns:
            The stored resource with its assigned resource version

        Raises:
            ConflictError: If a resource with the same key already exists
        """
        pass

    @abstractmethod
    async def get_resource(self, key: ResourceKey) -> Resource:
        """
        Get a resource.

        Raises:
            NotFoundError: If the resource does not exist
        """
        pass

    async def get_resource_status(self, key: ResourceKey) -> ResourceStatus:
        """Get only the status of a resource."""
        resource = await self.get_resource(key)
        return resource.status

    @abstractmethod
    async def update_resource(self, resource: Resource) -> Resource:
        """
        Optimistically replace status, options, labels and operator metadata.

        Args:
            resource: Resource carrying the resource_version it was read at

        Returns:
            The stored resource with its new resource version

        Raises:
            ConflictError: If resource_version is stale
            NotFoundError: If the resource does not exist
            InvalidTransitionError: If the status change leaves a terminal state
        """
        pass

    @abstractmethod
    async def patch_resource(self, key: ResourceKey, operator_metadata: dict[str, Any]) -> Resource:
        """
        Merge keys into the operator metadata of a resource.

        Keys mapped to None are removed.

        Raises:
            NotFoundError: If the resource does not exist
        """
        pass

    @abstractmethod
    async def delete_resource(self, key: ResourceKey) -> None:
        """
        Delete a resource.

        Raises:
            NotFoundError: If the resource does not exist
        """
        pass

    @abstractmethod
    async def list_resources(
        self,
        group: str,
        type: str,
        label_selector: Optional[str] = None,
    ) -> list[Resource]:
        """List resources of one group and type matching a label selector."""
        pass

    @abstractmethod
    def watch(
        self,
        group: str,
        type: str,
        label_selector: Optional[str] = None,
        resource_version: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream change notifications.

        Without a resource_version the stream starts with an ADDED event for
        every matching resource. With one, it replays changes made after that
        version. The stream ends when the timeout expires or the server
        closes it; callers reopen it from the last seen resource version.
        """
        pass
