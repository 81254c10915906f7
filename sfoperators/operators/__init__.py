"""
Operators - one per resource type.

The operator types are a closed set; the engine maps each OperatorType to
its operator and poller.
"""

from enum import Enum

from sfoperators.operators.backup_operator import BackupOperator
from sfoperators.operators.base import BaseOperator, Outcome
from sfoperators.operators.deployment_operator import DeploymentOperator, deployment_key
from sfoperators.operators.restore_operator import RestoreOperator
from sfoperators.operators.serviceflow_operator import ServiceFlowOperator, create_flow_task, flow_task_key
from sfoperators.operators.task_operator import TaskOperator


class OperatorType(str, Enum):
    """Operator types the engine can run."""
    TASK = "task"
    BACKUP = "backup"
    RESTORE = "restore"
    DEPLOYMENT = "deployment"
    SERVICEFLOW = "serviceflow"


__all__ = [
    "BackupOperator",
    "BaseOperator",
    "DeploymentOperator",
    "OperatorType",
    "Outcome",
    "RestoreOperator",
    "ServiceFlowOperator",
    "TaskOperator",
    "create_flow_task",
    "deployment_key",
    "flow_task_key",
]
