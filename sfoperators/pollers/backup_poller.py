"""
Backup status poller - follows agent backup jobs.
"""

import logging
from typing import Optional

from sfoperators.backends import AGENT_STATES, BackupAgentClient, map_job_state
from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.schemas import Resource, ResourceState, ResourceStatus

logger = logging.getLogger(__name__)


class BackupStatusPoller(BaseStatusPoller):
    """Poller for backup.servicefabrik.io/defaultbackups."""

    operator_type = "backup"
    resource_group = ResourceGroup.BACKUP
    resource_type = ResourceType.DEFAULT_BACKUP

    def __init__(self, store, agent: BackupAgentClient, **kwargs):
        super().__init__(store, **kwargs)
        self.agent = agent

    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        job_id = resource.status.last_operation.get("job_id")
        if not job_id:
            return None
        job = await self.agent.get_task_status(job_id)
        state = map_job_state(AGENT_STATES, job.state)
        if state == ResourceState.ABORTED and resource.state != ResourceState.ABORTING:
            state = ResourceState.FAILED
        description = job.description or f"Backup {resource.key.id} is {job.state}"
        return ResourceStatus(
            state=state,
            description=description,
            last_operation=resource.status.last_operation,
            response={**resource.status.response, "description": description, "agent_state": job.state},
        )

    def describe(self, resource: Resource) -> str:
        return f"Backup {resource.key.id}"
