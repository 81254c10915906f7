"""
Serial service flow operator.

A flow resource names a configured flow, an ordered list of tasks. Tasks are
created one at a time as task resources with ids ``<flow id>.<task order>``;
the flow poller creates the next one when the previous task succeeds.
Because the id is deterministic, creating the same task twice fails with a
conflict, which is ignored.
"""

import logging
from typing import Any

from sfoperators.constants import (
    INSTANCE_GUID_LABEL,
    SERVICEFLOW_ID_LABEL,
    ResourceGroup,
    ResourceType,
)
from sfoperators.errors import ConfigurationError, ConflictError
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus, TaskDetails
from sfoperators.store import ResourceStoreClient

logger = logging.getLogger(__name__)

ServiceFlows = dict[str, list[dict[str, Any]]]


def flow_task_key(flow_id: str, task_order: int) -> ResourceKey:
    return ResourceKey(ResourceGroup.SERVICEFLOW, ResourceType.TASK, f"{flow_id}.{task_order}")


def flow_tasks(flows: ServiceFlows, flow: Resource) -> list[dict[str, Any]]:
    """
    Task specs of the flow a resource names.

    Raises:
        ConfigurationError: If the flow is unknown or empty
    """
    name = flow.options.get("serviceflow_name")
    tasks = flows.get(name or "")
    if not tasks:
        raise ConfigurationError(f"Service flow {name!r} is not configured. Known: {sorted(flows)}")
    return tasks


async def create_flow_task(store: ResourceStoreClient, flows: ServiceFlows, flow: Resource, task_order: int) -> ResourceKey:
    """Create the task resource at ``task_order`` of a flow, once."""
    spec = flow_tasks(flows, flow)[task_order]
    options = flow.options
    key = flow_task_key(flow.key.id, task_order)
    details = TaskDetails(
        task_id=key.id,
        task_type=spec["task_type"],
        instance_id=options["instance_id"],
        operation_params={**options.get("operation_params", {}), **spec.get("operation_params", {})},
        user=dict(options.get("user", {})),
        task_description=spec.get("task_description", spec["task_type"]),
        serviceflow_id=flow.key.id,
        task_order=task_order,
    )
    try:
        await store.create_resource(Resource(
            key=key,
            labels={SERVICEFLOW_ID_LABEL: flow.key.id, INSTANCE_GUID_LABEL: options["instance_id"]},
            options=details.to_dict(),
            status=ResourceStatus(description=f"{details.description} is queued"),
        ))
        logger.info(f"Created task {key.id} of flow {options.get('serviceflow_name')}")
    except ConflictError:
        logger.info(f"Task {key.id} was already created, ignoring")
    return key


class ServiceFlowOperator(BaseOperator):
    """Operator for serviceflow.servicefabrik.io/serialserviceflows."""

    operator_type = "serviceflow"
    resource_group = ResourceGroup.SERVICEFLOW
    resource_type = ResourceType.SERIAL_SERVICE_FLOW

    def __init__(self, store: ResourceStoreClient, flows: ServiceFlows, **kwargs):
        super().__init__(store, **kwargs)
        self.flows = flows

    async def process(self, resource: Resource) -> Outcome:
        tasks = flow_tasks(self.flows, resource)
        if "instance_id" not in resource.options:
            raise ConfigurationError(f"Service flow {resource.key.id} has no instance_id")
        if await self.is_abort_requested(resource.key):
            return Outcome.aborted(f"Service flow {resource.key.id} aborted before it started")
        key = await create_flow_task(self.store, self.flows, resource, 0)
        name = resource.options["serviceflow_name"]
        return Outcome.in_progress(
            f"Service flow {name} is in progress (task 1/{len(tasks)})",
            last_operation={"task_order": 0, "task_id": key.id, "total_tasks": len(tasks)},
        )

    def describe(self, resource: Resource) -> str:
        return f"Service flow {resource.options.get('serviceflow_name', resource.key.id)}"
