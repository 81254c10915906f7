"""
Backup operator - starts default backups through the backup agent.
"""

import logging
from typing import Optional

from sfoperators.backends import BackupAgentClient
from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.schemas import Resource
from sfoperators.store import ResourceStoreClient

logger = logging.getLogger(__name__)


class BackupOperator(BaseOperator):
    """Operator for backup.servicefabrik.io/defaultbackups."""

    operator_type = "backup"
    resource_group = ResourceGroup.BACKUP
    resource_type = ResourceType.DEFAULT_BACKUP

    def __init__(self, store: ResourceStoreClient, agent: BackupAgentClient, **kwargs):
        super().__init__(store, **kwargs)
        self.agent = agent

    async def process(self, resource: Resource) -> Outcome:
        options = resource.options
        instance_id = options["instance_guid"]

        if await self.is_abort_requested(resource.key):
            return Outcome.aborted(f"Backup {resource.key.id} aborted before it started")

        job_id = await self.agent.start_backup(instance_id, resource.key.id, options)
        return Outcome.in_progress(
            f"Backup {resource.key.id} of instance {instance_id} is in progress",
            last_operation={"job_id": job_id, "type": options.get("type", "online")},
            response={"backup_guid": resource.key.id, "instance_guid": instance_id},
        )

    async def abort(self, resource: Resource) -> Optional[Outcome]:
        job_id = resource.status.last_operation.get("job_id")
        if not job_id:
            return Outcome.aborted(f"Backup {resource.key.id} aborted before it started")
        await self.agent.abort_backup(job_id)
        logger.info(f"Abort of agent job {job_id} requested", extra=self._log_extra(resource.key, "abort_sent"))
        return None

    def describe(self, resource: Resource) -> str:
        return f"Backup {resource.key.id}"
