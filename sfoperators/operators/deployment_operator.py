"""
Deployment operator - submits deployment operations to the director.

For each deployment resource (deployment.servicefabrik.io/directors):
1. take the instance lock (held until the poller sees the director task end)
2. resolve the deployment name, allocating a free network segment index on
   first use under a store-wide allocation lock
3. plan the manifest and submit it, recording the director task id

Deployment names are looked up through a relationship cache owned by this
operator. A miss is resolved from the director's deployment list and then
from the open deployment resources of the instance; only an instance with
neither gets a new index. The deployment poller evicts entries of deleted
deployments.
"""

import asyncio
import logging
from typing import Any, Optional

from sfoperators.backends import DirectorClient
from sfoperators.cache import RelationshipCache
from sfoperators.constants import (
    DEPLOYMENT_NAME,
    INSTANCE_GUID_LABEL,
    NETWORK_SEGMENT_INDEX,
    ResourceGroup,
    ResourceType,
)
from sfoperators.errors import ResourceLockedError
from sfoperators.locks import LockManager
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.planner import (
    ManifestPlanner,
    NetworkSegmentIndex,
    deployment_name,
    parse_deployment_name,
    require_instance_guid,
)
from sfoperators.schemas import Resource, ResourceKey
from sfoperators.store import ResourceStoreClient

logger = logging.getLogger(__name__)

# Lock id serializing segment index allocation across replicas
INDEX_ALLOCATION_LOCK = "network-segment-index-allocation"


def deployment_key(resource_id: str) -> ResourceKey:
    return ResourceKey(ResourceGroup.DEPLOYMENT, ResourceType.DIRECTOR, resource_id)


def _name_of(deployment: Any) -> str:
    return deployment if isinstance(deployment, str) else deployment.get("name", "")


class DeploymentOperator(BaseOperator):
    """Operator for deployment.servicefabrik.io/directors."""

    operator_type = "deployment"
    resource_group = ResourceGroup.DEPLOYMENT
    resource_type = ResourceType.DIRECTOR

    def __init__(
        self,
        store: ResourceStoreClient,
        director: DirectorClient,
        planner: ManifestPlanner,
        segment_index: NetworkSegmentIndex,
        locks: LockManager,
        **kwargs,
    ):
        super().__init__(store, **kwargs)
        self.director = director
        self.planner = planner
        self.segment_index = segment_index
        self.locks = locks
        self.deployment_names = RelationshipCache(loader=self.find_deployment_name)

    @staticmethod
    def instance_id(resource: Resource) -> str:
        return resource.options.get("instance_id", resource.key.id)

    async def process(self, resource: Resource) -> Outcome:
        instance_id = require_instance_guid(self.instance_id(resource))
        operation = resource.options.get("operation", "create")

        await self.locks.lock(instance_id, resource.key, operation)
        try:
            if await self.is_abort_requested(resource.key):
                await self.locks.unlock(instance_id)
                return Outcome.aborted(f"{operation.capitalize()} of {instance_id} aborted before it started")

            name, index = await self.resolve_deployment(instance_id, resource)
            if operation == "delete":
                task_id = await self.director.delete_deployment(name)
            else:
                manifest = self.planner.build(name, index, resource.options)
                task_id = await self.director.create_or_update_deployment(name, manifest)
        except Exception:
            await self.locks.unlock(instance_id)
            raise

        logger.info(
            f"Director task {task_id} started for {operation} of {name}",
            extra=self._log_extra(resource.key, "director_task"),
        )
        return Outcome.in_progress(
            f"{operation.capitalize()} of deployment {name} is in progress",
            last_operation={"task_id": task_id, "deployment_name": name, "operation": operation},
            response={"deployment_name": name},
            metadata={DEPLOYMENT_NAME: name, NETWORK_SEGMENT_INDEX: index},
        )

    async def abort(self, resource: Resource) -> Optional[Outcome]:
        if resource.status.last_operation.get("task_id"):
            # Director tasks run to completion; the poller finishes the abort
            return None
        await self.locks.unlock(self.instance_id(resource))
        return Outcome.aborted(f"{self.describe(resource)} aborted before it started")

    async def find_deployment_name(self, instance_id: str) -> Optional[str]:
        """
        Existing deployment name of an instance, or None.

        The director's deployment list wins; an open deployment resource of
        the instance covers a name allocated but not yet deployed.
        """
        for deployment in await self.director.get_deployment_names():
            name = _name_of(deployment)
            parsed = parse_deployment_name(name)
            if parsed is not None and parsed[2] == instance_id:
                return name
        for other in await self.store.list_resources(
            self.resource_group,
            self.resource_type,
            label_selector=f"{INSTANCE_GUID_LABEL}={instance_id}",
        ):
            allocated = other.operator_metadata.get(DEPLOYMENT_NAME)
            if allocated and not other.state.is_terminal:
                return allocated
        return None

    async def resolve_deployment(self, instance_id: str, resource: Resource) -> tuple[str, int]:
        """
        Deployment name and network segment index of an instance.

        Raises:
            NetworkExhaustedError: If a new index is needed and none is free
        """
        name = await self.deployment_names.get(instance_id) or resource.operator_metadata.get(DEPLOYMENT_NAME)
        if name:
            parsed = parse_deployment_name(name)
            if parsed is not None:
                self.deployment_names.put(instance_id, name)
                return name, parsed[1]
            logger.warning(f"Ignoring unparsable deployment name {name!r} of {instance_id}")
        name, index = await self._allocate(instance_id, resource)
        self.deployment_names.put(instance_id, name)
        return name, index

    async def _allocate(self, instance_id: str, resource: Resource) -> tuple[str, int]:
        attempt = 1
        while True:
            try:
                await self.locks.lock(INDEX_ALLOCATION_LOCK, resource.key, "allocate-index")
                break
            except ResourceLockedError:
                if attempt >= self.conflict_retries:
                    raise
                await asyncio.sleep(self.retry_delay)
                attempt += 1
        try:
            # Another replica may have allocated for this instance while we waited
            name = await self.find_deployment_name(instance_id)
            parsed = parse_deployment_name(name) if name else None
            if parsed is not None:
                return name, parsed[1]
            names = await self._known_deployment_names()
            index = self.segment_index.find_free_index(names)
            name = deployment_name(index, instance_id)
            # Visible to other replicas before the allocation lock is released
            await self.store.patch_resource(resource.key, {DEPLOYMENT_NAME: name, NETWORK_SEGMENT_INDEX: index})
        finally:
            await self.locks.unlock(INDEX_ALLOCATION_LOCK)
        logger.info(
            f"Allocated network segment index {index} for {instance_id}",
            extra=self._log_extra(resource.key, "index_allocated"),
        )
        return name, index

    async def _known_deployment_names(self) -> list[Any]:
        names: list[Any] = list(await self.director.get_deployment_names())
        for other in await self.store.list_resources(self.resource_group, self.resource_type):
            allocated = other.operator_metadata.get(DEPLOYMENT_NAME)
            # Finished deployments are listed by the director itself
            if allocated and not other.state.is_terminal:
                names.append(allocated)
        return names

    def describe(self, resource: Resource) -> str:
        operation = resource.options.get("operation", "create")
        return f"{operation.capitalize()} of {self.instance_id(resource)}"
