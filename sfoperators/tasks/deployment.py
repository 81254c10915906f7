"""
Deployment tasks - queue an operation on a service instance's deployment.

ServiceInstanceUpdateTask and BlueprintTask both create a
deployment.servicefabrik.io/directors resource that the deployment operator
submits to the director. Their outcome is verified by the deployment poller
against the director task, like any other deployment. The instance id must be a
lowercase guid, since it becomes part of the deployment name.
"""

import logging

from sfoperators.constants import INSTANCE_GUID_LABEL, ResourceGroup, ResourceType
from sfoperators.planner import require_instance_guid
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus, TaskDetails, TaskType
from sfoperators.tasks.base import Task, derive_resource_id

logger = logging.getLogger(__name__)


class DeploymentOperationTask(Task):
    """Shared behaviour of the tasks that queue a deployment operation."""

    operation: str
    names_deployment = True

    async def run(self, task_id: str, task_details: TaskDetails) -> TaskDetails:
        require_instance_guid(task_details.instance_id)
        resource_id = derive_resource_id(task_id)
        key = ResourceKey(ResourceGroup.DEPLOYMENT, ResourceType.DIRECTOR, resource_id)
        params = dict(task_details.operation_params)
        resource = Resource(
            key=key,
            labels={INSTANCE_GUID_LABEL: task_details.instance_id, "operation": self.operation},
            options={
                **params,
                "instance_id": task_details.instance_id,
                "operation": self.operation,
                "user": dict(task_details.user),
                "task_id": task_id,
            },
            status=ResourceStatus(description=f"{self.operation.capitalize()} of {task_details.instance_id} is queued"),
        )
        await self.create_once(resource)

        task_details.resource = key
        task_details.response = {
            "description": f"{self.operation.capitalize()} of instance {task_details.instance_id} initiated",
        }
        logger.info(f"Task {task_id}: {self.operation} queued for {task_details.instance_id} as {key}")
        return task_details


class ServiceInstanceUpdateTask(DeploymentOperationTask):
    task_type = TaskType.SERVICE_INSTANCE_UPDATE
    operation = "update"


class BlueprintTask(DeploymentOperationTask):
    task_type = TaskType.BLUEPRINT
    operation = "blueprint"
