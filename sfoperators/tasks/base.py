"""
Task contract.

A task turns a high-level intent ("back up instance X") into one created
resource and reports status by reading that resource back:

- run: idempotent per task id; the created resource's id is derived from the
  task id, so a second run finds the first run's resource instead of
  creating another one. Success means the work was initiated, not finished.
- get_status: read-only projection of the created resource's status.
- update_status: the one write path for a task resource's status; a single
  optimistic update that raises ConflictError on a stale version. Callers
  re-read and retry.
"""

import logging
import uuid
from abc import ABC, abstractmethod

from sfoperators.errors import ConflictError, PermanentError
from sfoperators.schemas import Resource, ResourceStatus, TaskDetails, TaskType
from sfoperators.store import ResourceStoreClient

logger = logging.getLogger(__name__)

TASK_NAMESPACE = uuid.UUID("6f1c2b1e-3a7d-4c55-9a51-7e1f0c9d2b40")


def derive_resource_id(task_id: str) -> str:
    """Stable resource id for the resource a task creates."""
    return str(uuid.uuid5(TASK_NAMESPACE, task_id))


class Task(ABC):
    """
    Abstract base class for tasks.

    Concrete tasks are listed in the task registry; the set is closed.
    """

    task_type: TaskType
    # Tasks whose instance id becomes part of a deployment name
    names_deployment = False

    def __init__(self, store: ResourceStoreClient):
        self.store = store

    @abstractmethod
    async def run(self, task_id: str, task_details: TaskDetails) -> TaskDetails:
        """
        Initiate the work of a task.

        Args:
            task_id: Id of the task resource
            task_details: Request correlation; the returned copy carries
                ``resource`` and ``response``

        Returns:
            The updated task details

        Raises:
            Exception: If the work could not be initiated
        """
        pass

    async def get_status(self, task_id: str, task_details: TaskDetails) -> ResourceStatus:
        """
        Status of the resource created by the task.

        Raises:
            PermanentError: If the task has not created a resource
            NotFoundError: If the created resource no longer exists
        """
        if task_details.resource is None:
            raise PermanentError(f"Task {task_id} has no resource to report status from")
        return await self.store.get_resource_status(task_details.resource)

    async def update_status(self, task: Resource, status: ResourceStatus) -> Resource:
        """
        Write the status of a task resource.

        Args:
            task: Task resource as last read (its resource_version is checked)
            status: New status

        Returns:
            The updated task resource

        Raises:
            ConflictError: If the task resource changed since it was read
        """
        updated = task.copy()
        updated.status = status
        return await self.store.update_resource(updated)

    async def create_once(self, resource: Resource) -> Resource:
        """Create a resource, or return the one a previous run already created."""
        try:
            return await self.store.create_resource(resource)
        except ConflictError:
            logger.info(
                f"{resource.key} already created by an earlier run of {self.task_type.value}",
                extra={"resource": str(resource.key), "event": "create_skipped"},
            )
            return await self.store.get_resource(resource.key)
