"""
Task schemas - the correlation object threaded through a task run.

TaskDetails is owned by the calling operator for the duration of one
``Task.run`` call. It is carried in the options of a task resource and is
never persisted on its own; its effects are persisted through the resource
the task creates.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sfoperators.schemas.resource import ResourceKey


class TaskType(str, Enum):
    """Closed set of task types understood by the task registry."""
    SERVICE_INSTANCE_BACKUP = "ServiceInstanceBackupTask"
    SERVICE_INSTANCE_RESTORE = "ServiceInstanceRestoreTask"
    SERVICE_INSTANCE_UPDATE = "ServiceInstanceUpdateTask"
    BLUEPRINT = "BlueprintTask"


@dataclass
class TaskDetails:
    """
    Request correlation for one task run.

    Attributes:
        task_id: Id of the task resource; created resources derive their id from it
        task_type: Registered task type name
        instance_id: Target service instance
        operation_params: Parameters of the requested operation
        user: Identity of the requester
        task_description: Human-readable name of the task
        serviceflow_id: Owning serial flow, if any
        task_order: Position within the owning flow
        resource: Locator of the resource created by the run
        response: Initiation message of the run
    """
    task_id: str
    task_type: str
    instance_id: str
    operation_params: dict[str, Any] = field(default_factory=dict)
    user: dict[str, Any] = field(default_factory=dict)
    task_description: str = ""
    serviceflow_id: Optional[str] = None
    task_order: Optional[int] = None
    resource: Optional[ResourceKey] = None
    response: dict[str, Any] = field(default_factory=dict)

    @property
    def description(self) -> str:
        return self.task_description or self.task_type

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "instance_id": self.instance_id,
            "operation_params": copy.deepcopy(self.operation_params),
            "user": copy.deepcopy(self.user),
            "task_description": self.task_description,
        }
        if self.serviceflow_id is not None:
            result["serviceflow_id"] = self.serviceflow_id
            result["task_order"] = self.task_order
        if self.resource is not None:
            result["resource"] = self.resource.to_dict()
        if self.response:
            result["response"] = copy.deepcopy(self.response)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskDetails":
        if "task_type" not in data or "instance_id" not in data:
            raise ValueError("Task details require task_type and instance_id")
        resource = data.get("resource")
        return cls(
            task_id=data.get("task_id", ""),
            task_type=data["task_type"],
            instance_id=data["instance_id"],
            operation_params=copy.deepcopy(data.get("operation_params", {})),
            user=copy.deepcopy(data.get("user", {})),
            task_description=data.get("task_description", ""),
            serviceflow_id=data.get("serviceflow_id"),
            task_order=data.get("task_order"),
            resource=ResourceKey.from_dict(resource) if resource else None,
            response=copy.deepcopy(data.get("response", {})),
        )
