"""
Service flow poller - advances serial flows task by task.

The current task of a flow is ``<flow id>.<task_order>``. When it succeeds
the next task is created; the flow succeeds with its last task and fails
with the first task that does not succeed. An ABORTING flow forwards the
abort to its current task.
"""

import logging
from typing import Optional

from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.errors import NotFoundError
from sfoperators.operators.serviceflow_operator import ServiceFlows, create_flow_task, flow_task_key, flow_tasks
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.schemas import Resource, ResourceState, ResourceStatus
from sfoperators.status import write_status

logger = logging.getLogger(__name__)


class ServiceFlowPoller(BaseStatusPoller):
    """Poller for serviceflow.servicefabrik.io/serialserviceflows."""

    operator_type = "serviceflow"
    resource_group = ResourceGroup.SERVICEFLOW
    resource_type = ResourceType.SERIAL_SERVICE_FLOW

    def __init__(self, store, flows: ServiceFlows, **kwargs):
        super().__init__(store, **kwargs)
        self.flows = flows

    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        last_operation = resource.status.last_operation
        if "task_order" not in last_operation:
            return None
        order = last_operation["task_order"]
        tasks = flow_tasks(self.flows, resource)
        name = resource.options.get("serviceflow_name")
        task_key = flow_task_key(resource.key.id, order)

        try:
            task_status = await self.store.get_resource_status(task_key)
        except NotFoundError:
            logger.warning(f"Task {task_key.id} of flow {resource.key.id} is missing, recreating")
            await create_flow_task(self.store, self.flows, resource, order)
            return None

        if resource.state == ResourceState.ABORTING and not task_status.state.is_terminal:
            if task_status.state != ResourceState.ABORTING:
                await write_status(self.store, task_key, ResourceStatus(
                    state=ResourceState.ABORTING,
                    description=f"Abort requested by flow {resource.key.id}",
                ))
            return None

        if not task_status.state.is_terminal:
            return None

        if task_status.state != ResourceState.SUCCEEDED:
            description = (
                f"Service flow {name} failed at task {order + 1}/{len(tasks)} "
                f"({tasks[order].get('task_type')}): {task_status.description}"
            )
            return ResourceStatus(
                state=ResourceState.FAILED,
                description=description,
                last_operation=last_operation,
                response={"description": description},
            )

        if order + 1 >= len(tasks):
            description = f"Service flow {name} succeeded"
            return ResourceStatus(
                state=ResourceState.SUCCEEDED,
                description=description,
                last_operation=last_operation,
                response={"description": description},
            )

        next_key = await create_flow_task(self.store, self.flows, resource, order + 1)
        return ResourceStatus(
            state=ResourceState.IN_PROGRESS,
            description=f"Service flow {name} is in progress (task {order + 2}/{len(tasks)})",
            last_operation={**last_operation, "task_order": order + 1, "task_id": next_key.id},
        )

    def describe(self, resource: Resource) -> str:
        return f"Service flow {resource.options.get('serviceflow_name', resource.key.id)}"
