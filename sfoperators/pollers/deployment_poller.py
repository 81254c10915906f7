"""
Deployment status poller - follows director tasks and releases instance locks.
"""

import logging
from typing import Optional

from sfoperators.backends import DIRECTOR_STATES, DirectorClient, map_job_state
from sfoperators.cache import RelationshipCache
from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.locks import LockManager
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.schemas import Resource, ResourceState, ResourceStatus

logger = logging.getLogger(__name__)


class DeploymentStatusPoller(BaseStatusPoller):
    """Poller for deployment.servicefabrik.io/directors."""

    operator_type = "deployment"
    resource_group = ResourceGroup.DEPLOYMENT
    resource_type = ResourceType.DIRECTOR

    def __init__(
        self,
        store,
        director: DirectorClient,
        locks: LockManager,
        deployment_names: RelationshipCache,
        **kwargs,
    ):
        super().__init__(store, **kwargs)
        self.director = director
        self.locks = locks
        self.deployment_names = deployment_names

    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        last_operation = resource.status.last_operation
        task_id = last_operation.get("task_id")
        if not task_id:
            return None
        job = await self.director.get_task_status(task_id)
        state = map_job_state(DIRECTOR_STATES, job.state)
        name = last_operation.get("deployment_name")
        description = f"{last_operation.get('operation', 'create').capitalize()} of deployment {name} {job.state}"
        if job.description:
            description = f"{description}: {job.description}"
        return ResourceStatus(
            state=state,
            description=description,
            last_operation=last_operation,
            response={"deployment_name": name, "description": description, "director_state": job.state},
        )

    async def on_terminal(self, resource: Resource) -> None:
        instance_id = resource.options.get("instance_id", resource.key.id)
        await self.locks.unlock(instance_id)
        operation = resource.status.last_operation.get("operation")
        if operation == "delete" and resource.state == ResourceState.SUCCEEDED:
            self.deployment_names.evict(instance_id)

    def describe(self, resource: Resource) -> str:
        operation = resource.options.get("operation", "create")
        return f"{operation.capitalize()} of {resource.options.get('instance_id', resource.key.id)}"
