"""
Backend job query contracts.

Backends have no push channel: pollers ask ``get_task_status(job_id)`` and
map the backend-specific state onto the canonical resource states.

Clients are protocols so that any HTTP client implementation can be plugged
in; LocalDirectorClient and LocalBackupAgentClient are in-process
implementations for tests and local mode.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable

from sfoperators.schemas import ResourceState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobStatus:
    """
    Status of a backend job as reported by the backend.

    Attributes:
        state: Backend-specific state name
        description: Backend-provided detail
        data: Raw payload
    """
    state: str
    description: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class BackendJobClient(Protocol):
    """Anything a status poller can query."""

    async def get_task_status(self, job_id: str) -> JobStatus:
        """Return the current status of a backend job."""
        ...


@runtime_checkable
class DirectorClient(BackendJobClient, Protocol):
    """Deployment director: VM deployments submitted as manifests."""

    async def get_deployment_names(self) -> list[str]:
        """Names of every deployment known to the director."""
        ...

    async def create_or_update_deployment(self, name: str, manifest: dict[str, Any]) -> str:
        """Submit a manifest; returns the director task id."""
        ...

    async def delete_deployment(self, name: str) -> str:
        """Delete a deployment; returns the director task id."""
        ...


@runtime_checkable
class BackupAgentClient(BackendJobClient, Protocol):
    """Backup agent running next to the service instance."""

    async def start_backup(self, instance_id: str, backup_guid: str, options: dict[str, Any]) -> str:
        """Start a backup; returns the agent job id."""
        ...

    async def abort_backup(self, job_id: str) -> None:
        """Ask the agent to abort a running backup."""
        ...

    async def start_restore(self, instance_id: str, backup_guid: str, restore_guid: str, options: dict[str, Any]) -> str:
        """Start restoring a backup onto an instance; returns the agent job id."""
        ...

    async def abort_restore(self, job_id: str) -> None:
        """Ask the agent to abort a running restore."""
        ...


DIRECTOR_STATES: dict[str, ResourceState] = {
    "queued": ResourceState.IN_PROGRESS,
    "processing": ResourceState.IN_PROGRESS,
    "cancelling": ResourceState.IN_PROGRESS,
    "done": ResourceState.SUCCEEDED,
    "error": ResourceState.FAILED,
    "cancelled": ResourceState.FAILED,
    "timeout": ResourceState.FAILED,
}

AGENT_STATES: dict[str, ResourceState] = {
    "processing": ResourceState.IN_PROGRESS,
    "succeeded": ResourceState.SUCCEEDED,
    "failed": ResourceState.FAILED,
    "aborting": ResourceState.ABORTING,
    "aborted": ResourceState.ABORTED,
}


def map_job_state(mapping: Mapping[str, ResourceState], job_state: str) -> ResourceState:
    """
    Map a backend job state onto a resource state.

    Unknown states are treated as still running; the poller timeout bounds
    how long such a resource can stay IN_PROGRESS.
    """
    state = mapping.get(job_state.lower())
    if state is None:
        logger.warning(f"Unknown backend job state {job_state!r}, treating as in progress")
        return ResourceState.IN_PROGRESS
    return state
