"""
Restore operator - starts default restores through the backup agent.

A restore overwrites the data of a running instance, so it holds the
instance lock from the start of the agent job until the restore poller sees
the job end. Deployment operations on the instance fail as locked meanwhile.
"""

import logging
from typing import Optional

from sfoperators.backends import BackupAgentClient
from sfoperators.constants import ResourceGroup, ResourceType
from sfoperators.locks import LockManager
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.schemas import Resource
from sfoperators.store import ResourceStoreClient

logger = logging.getLogger(__name__)


class RestoreOperator(BaseOperator):
    """Operator for restore.servicefabrik.io/defaultrestores."""

    operator_type = "restore"
    resource_group = ResourceGroup.RESTORE
    resource_type = ResourceType.DEFAULT_RESTORE

    def __init__(self, store: ResourceStoreClient, agent: BackupAgentClient, locks: LockManager, **kwargs):
        super().__init__(store, **kwargs)
        self.agent = agent
        self.locks = locks

    async def process(self, resource: Resource) -> Outcome:
        options = resource.options
        instance_id = options["instance_guid"]
        backup_guid = options["backup_guid"]

        await self.locks.lock(instance_id, resource.key, "restore")
        try:
            if await self.is_abort_requested(resource.key):
                await self.locks.unlock(instance_id)
                return Outcome.aborted(f"Restore {resource.key.id} aborted before it started")
            job_id = await self.agent.start_restore(instance_id, backup_guid, resource.key.id, options)
        except Exception:
            await self.locks.unlock(instance_id)
            raise

        logger.info(
            f"Agent job {job_id} started restoring backup {backup_guid} onto {instance_id}",
            extra=self._log_extra(resource.key, "restore_started"),
        )
        return Outcome.in_progress(
            f"Restore {resource.key.id} of backup {backup_guid} onto instance {instance_id} is in progress",
            last_operation={"job_id": job_id, "backup_guid": backup_guid},
            response={"restore_guid": resource.key.id, "backup_guid": backup_guid, "instance_guid": instance_id},
        )

    async def abort(self, resource: Resource) -> Optional[Outcome]:
        job_id = resource.status.last_operation.get("job_id")
        if not job_id:
            await self.locks.unlock(resource.options["instance_guid"])
            return Outcome.aborted(f"Restore {resource.key.id} aborted before it started")
        await self.agent.abort_restore(job_id)
        logger.info(f"Abort of agent job {job_id} requested", extra=self._log_extra(resource.key, "abort_sent"))
        return None

    def describe(self, resource: Resource) -> str:
        return f"Restore {resource.key.id}"
