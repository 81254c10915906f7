"""
Tasks and the closed task registry.
"""

from sfoperators.tasks.backup import ServiceInstanceBackupTask
from sfoperators.tasks.base import Task, derive_resource_id
from sfoperators.tasks.deployment import BlueprintTask, ServiceInstanceUpdateTask
from sfoperators.tasks.registry import TASK_CLASSES, TaskRegistry
from sfoperators.tasks.restore import ServiceInstanceRestoreTask

__all__ = [
    "BlueprintTask",
    "ServiceInstanceBackupTask",
    "ServiceInstanceRestoreTask",
    "ServiceInstanceUpdateTask",
    "TASK_CLASSES",
    "Task",
    "TaskRegistry",
    "derive_resource_id",
]
