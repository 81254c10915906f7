"""
In-process backends.

Jobs finish after a fixed number of status queries, which keeps poller
behaviour observable without a real director or agent. A job can be made to
fail by id, and the clients record every submission for inspection.
"""

import itertools
import logging
from typing import Any, Optional

from sfoperators.backends.base import JobStatus
from sfoperators.errors import NotFoundError

logger = logging.getLogger(__name__)


class _LocalJobs:
    """Job table shared by the local clients."""

    def __init__(self, prefix: str, polls_to_finish: int, running: str, done: str, failed: str):
        self.prefix = prefix
        self.polls_to_finish = polls_to_finish
        self.running, self.done, self.failed = running, done, failed
        self.jobs: dict[str, dict[str, Any]] = {}
        self.failing: set[str] = set()
        self._ids = itertools.count(1)

    def start(self, **details: Any) -> str:
        job_id = f"{self.prefix}{next(self._ids)}"
        self.jobs[job_id] = {"polls": 0, "state": self.running, **details}
        return job_id

    def status(self, job_id: str) -> JobStatus:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job["state"] == self.running:
            job["polls"] += 1
            if job["polls"] >= self.polls_to_finish:
                job["state"] = self.failed if job_id in self.failing else self.done
        return JobStatus(state=job["state"], description=f"Job {job_id} is {job['state']}")


class LocalDirectorClient:
    """Director stand-in keeping deployments in memory."""

    def __init__(self, polls_to_finish: int = 1, deployment_names: Optional[list[str]] = None):
        self._jobs = _LocalJobs("director-task-", polls_to_finish, "processing", "done", "error")
        self.deployments: dict[str, dict[str, Any]] = {name: {} for name in deployment_names or []}

    @property
    def tasks(self) -> dict[str, dict[str, Any]]:
        return self._jobs.jobs

    def fail_task(self, task_id: str) -> None:
        self._jobs.failing.add(task_id)

    async def get_deployment_names(self) -> list[str]:
        return sorted(self.deployments)

    async def create_or_update_deployment(self, name: str, manifest: dict[str, Any]) -> str:
        self.deployments[name] = manifest
        task_id = self._jobs.start(deployment=name)
        logger.debug(f"Director task {task_id} submitted for {name}")
        return task_id

    async def delete_deployment(self, name: str) -> str:
        if name not in self.deployments:
            raise NotFoundError(f"Deployment {name} not found")
        del self.deployments[name]
        return self._jobs.start(deployment=name, operation="delete")

    async def get_task_status(self, job_id: str) -> JobStatus:
        return self._jobs.status(job_id)


class LocalBackupAgentClient:
    """Backup agent stand-in running backups and restores."""

    def __init__(self, polls_to_finish: int = 1):
        self._jobs = _LocalJobs("backup-", polls_to_finish, "processing", "succeeded", "failed")
        self._restore_jobs = _LocalJobs("restore-", polls_to_finish, "processing", "succeeded", "failed")
        self.aborted: list[str] = []

    @property
    def backups(self) -> dict[str, dict[str, Any]]:
        return self._jobs.jobs

    @property
    def restores(self) -> dict[str, dict[str, Any]]:
        return self._restore_jobs.jobs

    def fail_backup(self, job_id: str) -> None:
        self._jobs.failing.add(job_id)

    def fail_restore(self, job_id: str) -> None:
        self._restore_jobs.failing.add(job_id)

    def _table(self, job_id: str) -> _LocalJobs:
        return self._restore_jobs if job_id in self._restore_jobs.jobs else self._jobs

    async def start_backup(self, instance_id: str, backup_guid: str, options: dict[str, Any]) -> str:
        return self._jobs.start(instance_id=instance_id, backup_guid=backup_guid, options=options)

    async def start_restore(self, instance_id: str, backup_guid: str, restore_guid: str, options: dict[str, Any]) -> str:
        return self._restore_jobs.start(
            instance_id=instance_id, backup_guid=backup_guid, restore_guid=restore_guid, options=options,
        )

    async def _abort(self, jobs: _LocalJobs, job_id: str) -> None:
        job = jobs.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        self.aborted.append(job_id)
        if job["state"] == jobs.running:
            job["state"] = "aborted"

    async def abort_backup(self, job_id: str) -> None:
        await self._abort(self._jobs, job_id)

    async def abort_restore(self, job_id: str) -> None:
        await self._abort(self._restore_jobs, job_id)

    async def get_task_status(self, job_id: str) -> JobStatus:
        return self._table(job_id).status(job_id)
