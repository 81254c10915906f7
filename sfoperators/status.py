"""
Status writes shared by operators and pollers.

All status mutation goes through an optimistic update against the resource
version that was just read. A write that would follow no edge of the state
machine (for example IN_PROGRESS over a resource a caller has meanwhile
moved to ABORTING) is skipped rather than forced.
"""

import logging
from typing import Any, Optional

from sfoperators.constants import MAX_CONFLICT_RETRIES, RETRY_DELAY
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus, is_valid_transition
from sfoperators.store import ResourceStoreClient
from sfoperators.utils import retry_on_conflict

logger = logging.getLogger(__name__)


async def write_status(
    store: ResourceStoreClient,
    key: ResourceKey,
    status: ResourceStatus,
    operator_metadata: Optional[dict[str, Any]] = None,
    max_attempts: int = MAX_CONFLICT_RETRIES,
    retry_delay: float = RETRY_DELAY,
) -> Optional[Resource]:
    """
    Write a status, re-reading and retrying on conflicts.

    Args:
        store: Resource store client
        key: Resource to update
        status: Status to write
        operator_metadata: Metadata keys to merge in the same write
        max_attempts: Conflict retries before surfacing a TransientError
        retry_delay: Seconds between conflicting attempts

    Returns:
        The updated resource, or None if the transition is no longer valid

    Raises:
        TransientError: If every attempt conflicted
        NotFoundError: If the resource was deleted
    """

    async def attempt() -> Optional[Resource]:
        current = await store.get_resource(key)
        if current.status.state != status.state and not is_valid_transition(current.status.state, status.state):
            logger.info(
                f"Skipping status write on {key}: {current.status.state.value} -> {status.state.value}",
                extra={"resource": str(key), "event": "transition_skipped"},
            )
            return None
        if current.status.state == status.state and current.status.state.is_terminal:
            return None
        current.status = status
        if operator_metadata:
            current.operator_metadata.update(operator_metadata)
        return await store.update_resource(current)

    return await retry_on_conflict(attempt, max_attempts=max_attempts, delay=retry_delay, logger=logger)
