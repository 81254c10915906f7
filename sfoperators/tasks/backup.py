"""
ServiceInstanceBackupTask - queue a default backup of a service instance.
"""

import logging

from sfoperators.constants import INSTANCE_GUID_LABEL, ResourceGroup, ResourceType
from sfoperators.errors import PermanentError
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus, TaskDetails, TaskType
from sfoperators.tasks.base import Task, derive_resource_id

logger = logging.getLogger(__name__)


class ServiceInstanceBackupTask(Task):
    """Creates one backup.servicefabrik.io/defaultbackups resource per task id."""

    task_type = TaskType.SERVICE_INSTANCE_BACKUP

    async def run(self, task_id: str, task_details: TaskDetails) -> TaskDetails:
        params = task_details.operation_params
        if not params.get("plan_id"):
            raise PermanentError(f"Backup task {task_id} requires operation_params.plan_id")

        backup_guid = derive_resource_id(task_id)
        key = ResourceKey(ResourceGroup.BACKUP, ResourceType.DEFAULT_BACKUP, backup_guid)
        resource = Resource(
            key=key,
            labels={INSTANCE_GUID_LABEL: task_details.instance_id},
            options={
                "guid": backup_guid,
                "instance_guid": task_details.instance_id,
                "plan_id": params["plan_id"],
                "type": params.get("type", "online"),
                "trigger": params.get("trigger", "on-demand"),
                "arguments": dict(params),
                "user": dict(task_details.user),
                "task_id": task_id,
            },
            status=ResourceStatus(description=f"Backup {backup_guid} is queued"),
        )
        await self.create_once(resource)

        task_details.resource = key
        task_details.response = {
            "description": f"Backup {backup_guid} of instance {task_details.instance_id} initiated",
            "backup_guid": backup_guid,
        }
        logger.info(f"Task {task_id}: backup {backup_guid} queued for {task_details.instance_id}")
        return task_details
