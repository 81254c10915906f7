"""
Status pollers - one per operator type.
"""

from sfoperators.pollers.backup_poller import BackupStatusPoller
from sfoperators.pollers.base import BaseStatusPoller
from sfoperators.pollers.deployment_poller import DeploymentStatusPoller
from sfoperators.pollers.restore_poller import RestoreStatusPoller
from sfoperators.pollers.serviceflow_poller import ServiceFlowPoller
from sfoperators.pollers.task_poller import TaskStatusPoller

__all__ = [
    "BackupStatusPoller",
    "BaseStatusPoller",
    "DeploymentStatusPoller",
    "RestoreStatusPoller",
    "ServiceFlowPoller",
    "TaskStatusPoller",
]
