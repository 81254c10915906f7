"""
Task status poller - mirrors a created resource's outcome onto its task.

The backend of a task is the resource it created. The poller reads that
resource through ``Task.get_status`` and, once it is terminal, writes the
task's status through ``Task.update_status``.
"""

import logging
from typing import Optional

from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.schemas import (
    Resource,
    ResourceKey,
    ResourceState,
    ResourceStatus,
    TaskDetails,
    is_valid_transition,
)
from sfoperators.tasks import TaskRegistry
from sfoperators.utils import retry_on_conflict

logger = logging.getLogger(__name__)


class TaskStatusPoller(BaseStatusPoller):
    """Poller for serviceflow.servicefabrik.io/tasks."""

    operator_type = "task"
    resource_group = ResourceGroup.SERVICEFLOW
    resource_type = ResourceType.TASK

    def __init__(self, store, registry: TaskRegistry, **kwargs):
        super().__init__(store, **kwargs)
        self.registry = registry

    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        locator = resource.status.last_operation.get("resource")
        if not locator:
            return None
        details = TaskDetails.from_dict(resource.options)
        details.resource = ResourceKey.from_dict(locator)
        task = self.registry.get_task(details.task_type)

        status = await task.get_status(resource.key.id, details)
        if not status.state.is_terminal:
            return None
        # An aborted child fails the task unless the task itself is aborting
        state = status.state
        if state == ResourceState.ABORTED and resource.state != ResourceState.ABORTING:
            state = ResourceState.FAILED
        return ResourceStatus(
            state=state,
            description=f"{details.description} {status.state.value}. {status.description}".strip(),
            last_operation=resource.status.last_operation,
            response={"description": status.description, "state": status.state.value},
        )

    async def write(self, resource: Resource, status: ResourceStatus) -> Optional[Resource]:
        task = self.registry.get_task(resource.options["task_type"])

        async def attempt() -> Optional[Resource]:
            current = await self.store.get_resource(resource.key)
            if not is_valid_transition(current.state, status.state):
                return None
            return await task.update_status(current, status)

        return await retry_on_conflict(attempt, max_attempts=self.conflict_retries, delay=self.retry_delay, logger=logger)

    def describe(self, resource: Resource) -> str:
        return resource.options.get("task_description") or f"Task {resource.key.id}"
