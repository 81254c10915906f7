"""
Schemas for resources and task requests.

- Resource, ResourceKey, ResourceStatus: persisted records in the resource store
- ResourceState: lifecycle states and the transitions between them
- TaskDetails, TaskType: correlation object for one task run
"""

from sfoperators.schemas.resource import (
    TERMINAL_STATES,
    Resource,
    ResourceKey,
    ResourceState,
    ResourceStatus,
    is_valid_transition,
)
from sfoperators.schemas.task import TaskDetails, TaskType

__all__ = [
    "TERMINAL_STATES",
    "Resource",
    "ResourceKey",
    "ResourceState",
    "ResourceStatus",
    "TaskDetails",
    "TaskType",
    "is_valid_transition",
]
