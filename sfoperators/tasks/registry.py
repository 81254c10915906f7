"""
Task Registry - closed mapping from task type to task implementation.

The set of task types is fixed here. There is no runtime registration:
configured task types are checked against this table at startup, and a
lookup of an unknown type is a programmer error.
"""

from typing import Iterable, Union

from sfoperators.errors import UnknownTaskTypeError
from sfoperators.schemas import TaskType
from sfoperators.store import ResourceStoreClient
from sfoperators.tasks.backup import ServiceInstanceBackupTask
from sfoperators.tasks.base import Task
from sfoperators.tasks.deployment import BlueprintTask, ServiceInstanceUpdateTask
from sfoperators.tasks.restore import ServiceInstanceRestoreTask

TASK_CLASSES: dict[TaskType, type[Task]] = {
    TaskType.SERVICE_INSTANCE_BACKUP: ServiceInstanceBackupTask,
    TaskType.SERVICE_INSTANCE_RESTORE: ServiceInstanceRestoreTask,
    TaskType.SERVICE_INSTANCE_UPDATE: ServiceInstanceUpdateTask,
    TaskType.BLUEPRINT: BlueprintTask,
}


class TaskRegistry:
    """
    Lookup of task implementations by type.

    Usage:
        registry = TaskRegistry(store)
        registry.validate(config.task_types)   # at startup
        task = registry.get_task("ServiceInstanceBackupTask")
    """

    def __init__(self, store: ResourceStoreClient):
        self._tasks: dict[TaskType, Task] = {
            task_type: task_class(store) for task_type, task_class in TASK_CLASSES.items()
        }

    def get_task(self, task_type: Union[str, TaskType]) -> Task:
        """
        Get the task implementation for a type.

        Raises:
            UnknownTaskTypeError: If the type is not registered
        """
        try:
            return self._tasks[TaskType(task_type)]
        except ValueError:
            raise UnknownTaskTypeError(
                f"No task registered for type: {task_type}. "
                f"Registered: {self.list_task_types()}"
            ) from None

    def has(self, task_type: Union[str, TaskType]) -> bool:
        try:
            return TaskType(task_type) in self._tasks
        except ValueError:
            return False

    def list_task_types(self) -> list[str]:
        return [task_type.value for task_type in self._tasks]

    def validate(self, task_types: Iterable[str]) -> None:
        """
        Check configured task types at startup.

        Raises:
            UnknownTaskTypeError: Naming every configured type that is not registered
        """
        unknown = sorted(t for t in task_types if not self.has(t))
        if unknown:
            raise UnknownTaskTypeError(
                f"Configured task types have no implementation: {unknown}. "
                f"Registered: {self.list_task_types()}"
            )
