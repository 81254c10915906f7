"""
Resource schemas - the unit of persisted intent and state.

A Resource is identified by (group, type, id). Its options are fixed at
creation; its status is moved through the state machine below by the owning
operator and poller only:

    IN_QUEUE -> IN_PROGRESS -> {SUCCEEDED | FAILED}
    IN_QUEUE | IN_PROGRESS -> ABORTING -> ABORTED

Terminal states (SUCCEEDED, FAILED, ABORTED) have no outgoing edges.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ResourceState(str, Enum):
    """Lifecycle state of a resource."""
    IN_QUEUE = "in_queue"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTING = "aborting"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    ResourceState.SUCCEEDED,
    ResourceState.FAILED,
    ResourceState.ABORTED,
})

# Edges of the state machine. Rewriting the current state (to update the
# description or last operation) is always allowed for non-terminal states.
TRANSITIONS: dict[ResourceState, frozenset[ResourceState]] = {
    ResourceState.IN_QUEUE: frozenset({ResourceState.IN_PROGRESS, ResourceState.ABORTING}),
    ResourceState.IN_PROGRESS: frozenset({
        ResourceState.SUCCEEDED,
        ResourceState.FAILED,
        ResourceState.ABORTING,
    }),
    ResourceState.ABORTING: frozenset({ResourceState.ABORTED}),
    ResourceState.SUCCEEDED: frozenset(),
    ResourceState.FAILED: frozenset(),
    ResourceState.ABORTED: frozenset(),
}


def is_valid_transition(current: ResourceState, target: ResourceState) -> bool:
    """Check whether a status write from ``current`` to ``target`` is allowed."""
    if current == target:
        return not current.is_terminal
    return target in TRANSITIONS[current]


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Identity of a resource: unique per group and type."""
    group: str
    type: str
    id: str

    def __str__(self) -> str:
        return f"{self.group}/{self.type}/{self.id}"

    def to_dict(self) -> dict[str, str]:
        return {
            "resourceGroup": self.group,
            "resourceType": self.type,
            "resourceId": self.id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceKey":
        return cls(
            group=data["resourceGroup"],
            type=data["resourceType"],
            id=data["resourceId"],
        )


@dataclass
class ResourceStatus:
    """
    Mutable status of a resource.

    Attributes:
        state: Lifecycle state
        description: Human-readable summary of the current state
        last_operation: Free-form progress detail (e.g. backend job id)
        response: Free-form result or error detail
    """
    state: ResourceState = ResourceState.IN_QUEUE
    description: str = ""
    last_operation: dict[str, Any] = field(default_factory=dict)
    response: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "description": self.description,
            "lastOperation": copy.deepcopy(self.last_operation),
            "response": copy.deepcopy(self.response),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceStatus":
        return cls(
            state=ResourceState(data.get("state", ResourceState.IN_QUEUE.value)),
            description=data.get("description", ""),
            last_operation=copy.deepcopy(data.get("lastOperation", {})),
            response=copy.deepcopy(data.get("response", {})),
        )


@dataclass
class Resource:
    """
    A persisted, typed, labeled record of intent and status.

    Attributes:
        key: (group, type, id) identity
        labels: String labels used for watch filtering and correlation
        options: Payload fixed at creation describing what to do
        status: Mutable status, written by the owning operator and poller
        operator_metadata: Operator bookkeeping side-channel, distinct from status
        resource_version: Store revision of the last write, used for optimistic updates
        created_at: Creation time assigned by the store
    """
    key: ResourceKey
    labels: dict[str, str] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    status: ResourceStatus = field(default_factory=ResourceStatus)
    operator_metadata: dict[str, Any] = field(default_factory=dict)
    resource_version: int = 0
    created_at: Optional[datetime] = None

    @property
    def state(self) -> ResourceState:
        return self.status.state

    def copy(self) -> "Resource":
        """Deep copy, so callers never share mutable state with the store."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            **self.key.to_dict(),
            "labels": dict(self.labels),
            "options": copy.deepcopy(self.options),
            "status": self.status.to_dict(),
            "operatorMetadata": copy.deepcopy(self.operator_metadata),
            "resourceVersion": self.resource_version,
        }
        if self.created_at is not None:
            result["createdAt"] = self.created_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resource":
        created_at = data.get("createdAt")
        return cls(
            key=ResourceKey.from_dict(data),
            labels=dict(data.get("labels", {})),
            options=copy.deepcopy(data.get("options", {})),
            status=ResourceStatus.from_dict(data.get("status", {})),
            operator_metadata=copy.deepcopy(data.get("operatorMetadata", {})),
            resource_version=data.get("resourceVersion", 0),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )
