"""
Backend job clients queried by status pollers.
"""

from sfoperators.backends.base import (
    AGENT_STATES,
    DIRECTOR_STATES,
    BackendJobClient,
    BackupAgentClient,
    DirectorClient,
    JobStatus,
    map_job_state,
)
from sfoperators.backends.local import LocalBackupAgentClient, LocalDirectorClient

__all__ = [
    "AGENT_STATES",
    "DIRECTOR_STATES",
    "BackendJobClient",
    "BackupAgentClient",
    "DirectorClient",
    "JobStatus",
    "LocalBackupAgentClient",
    "LocalDirectorClient",
    "map_job_state",
]
