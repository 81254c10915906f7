"""
ServiceInstanceRestoreTask - queue a default restore of a service instance.

The restore names a finished backup of the same instance. The backup is
read from the store when the task runs, so a restore of a missing, running
or foreign backup is rejected before any resource is created.
"""

import logging

from sfoperators.constants import INSTANCE_GUID_LABEL, ResourceGroup, ResourceType
from sfoperators.errors import NotFoundError, PermanentError
from sfoperators.schemas import Resource, ResourceKey, ResourceState, ResourceStatus, TaskDetails, TaskType
from sfoperators.tasks.base import Task, derive_resource_id

logger = logging.getLogger(__name__)


class ServiceInstanceRestoreTask(Task):
    """Creates one restore.servicefabrik.io/defaultrestores resource per task id."""

    task_type = TaskType.SERVICE_INSTANCE_RESTORE

    async def run(self, task_id: str, task_details: TaskDetails) -> TaskDetails:
        params = task_details.operation_params
        backup_guid = params.get("backup_guid")
        if not backup_guid:
            raise PermanentError(f"Restore task {task_id} requires operation_params.backup_guid")
        await self._check_backup(task_details.instance_id, backup_guid)

        restore_guid = derive_resource_id(task_id)
        key = ResourceKey(ResourceGroup.RESTORE, ResourceType.DEFAULT_RESTORE, restore_guid)
        resource = Resource(
            key=key,
            labels={INSTANCE_GUID_LABEL: task_details.instance_id},
            options={
                "restore_guid": restore_guid,
                "backup_guid": backup_guid,
                "instance_guid": task_details.instance_id,
                "plan_id": params.get("plan_id"),
                "arguments": dict(params),
                "user": dict(task_details.user),
                "task_id": task_id,
            },
            status=ResourceStatus(description=f"Restore {restore_guid} is queued"),
        )
        await self.create_once(resource)

        task_details.resource = key
        task_details.response = {
            "description": f"Restore of backup {backup_guid} onto instance {task_details.instance_id} initiated",
            "restore_guid": restore_guid,
        }
        logger.info(f"Task {task_id}: restore {restore_guid} of backup {backup_guid} queued")
        return task_details

    async def _check_backup(self, instance_id: str, backup_guid: str) -> None:
        key = ResourceKey(ResourceGroup.BACKUP, ResourceType.DEFAULT_BACKUP, backup_guid)
        try:
            backup = await self.store.get_resource(key)
        except NotFoundError:
            raise PermanentError(f"Backup {backup_guid} not found") from None
        if backup.options.get("instance_guid") != instance_id:
            raise PermanentError(f"Backup {backup_guid} does not belong to instance {instance_id}")
        if backup.state != ResourceState.SUCCEEDED:
            raise PermanentError(f"Backup {backup_guid} is {backup.state.value}, only succeeded backups can be restored")
