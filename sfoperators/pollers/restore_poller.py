"""
Restore status poller - follows agent restore jobs and releases instance locks.
"""

import logging
from typing import Optional

from sfoperators.backends import AGENT_STATES, BackupAgentClient, map_job_state
from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.locks import LockManager
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.schemas import Resource, ResourceState, ResourceStatus

logger = logging.getLogger(__name__)


class RestoreStatusPoller(BaseStatusPoller):
    """Poller for restore.servicefabrik.io/defaultrestores."""

    operator_type = "restore"
    resource_group = ResourceGroup.RESTORE
    resource_type = ResourceType.DEFAULT_RESTORE

    def __init__(self, store, agent: BackupAgentClient, locks: LockManager, **kwargs):
        super().__init__(store, **kwargs)
        self.agent = agent
        self.locks = locks

    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        job_id = resource.status.last_operation.get("job_id")
        if not job_id:
            return None
        job = await self.agent.get_task_status(job_id)
        state = map_job_state(AGENT_STATES, job.state)
        if state == ResourceState.ABORTED and resource.state != ResourceState.ABORTING:
            state = ResourceState.FAILED
        description = job.description or f"Restore {resource.key.id} is {job.state}"
        return ResourceStatus(
            state=state,
            description=description,
            last_operation=resource.status.last_operation,
            response={**resource.status.response, "description": description, "agent_state": job.state},
        )

    async def on_terminal(self, resource: Resource) -> None:
        await self.locks.unlock(resource.options["instance_guid"])

    def describe(self, resource: Resource) -> str:
        return f"Restore {resource.key.id}"
