"""
Task operator - runs task resources through the task registry.

A task resource (serviceflow.servicefabrik.io/tasks) carries TaskDetails in
its options. The operator looks up the task, runs it on a copy of the
details and records the created resource's locator in ``lastOperation``.
The task poller later mirrors that resource's outcome onto the task.
"""

import copy
import logging

from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.schemas import Resource, TaskDetails
from sfoperators.store import ResourceStoreClient
from sfoperators.tasks import TaskRegistry

logger = logging.getLogger(__name__)


class TaskOperator(BaseOperator):
    """Operator for task resources."""

    operator_type = "task"
    resource_group = ResourceGroup.SERVICEFLOW
    resource_type = ResourceType.TASK

    def __init__(self, store: ResourceStoreClient, registry: TaskRegistry, **kwargs):
        super().__init__(store, **kwargs)
        self.registry = registry

    async def process(self, resource: Resource) -> Outcome:
        details = TaskDetails.from_dict(resource.options)
        details.task_id = resource.key.id
        task = self.registry.get_task(details.task_type)

        if await self.is_abort_requested(resource.key):
            return Outcome.aborted(f"{details.description} aborted before it started")

        result = await task.run(resource.key.id, copy.deepcopy(details))
        logger.info(
            f"Task {resource.key.id} ({details.task_type}) initiated {result.resource}",
            extra=self._log_extra(resource.key, "task_started"),
        )
        return Outcome.in_progress(
            f"{details.description} is in progress.",
            last_operation={"resource": result.resource.to_dict()} if result.resource else {},
            response=result.response,
        )

    def describe(self, resource: Resource) -> str:
        return resource.options.get("task_description") or f"Task {resource.key.id}"
