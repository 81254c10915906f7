"""
Lock manager - serializes work on one service instance across operator replicas.

A lock is a resource in lock.servicefabrik.io/deploymentlocks whose id is the
instance id. Creating it is the acquisition; the store's create conflict is
the mutual exclusion. Locks carry their own TTL so that a crashed holder
cannot block an instance forever.
"""

import asyncio
import logging
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Optional

from sfoperators.constants import (
    DEFAULT_LOCK_TTL,
    INSTANCE_GUID_LABEL,
    MAX_RETRY_UNLOCK,
    RETRY_DELAY,
    ResourceGroup,
    ResourceType,
)
from sfoperators.errors import ConflictError, NotFoundError, ResourceLockedError, TransientError
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus
from sfoperators.store import ResourceStoreClient
from sfoperators.utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class LockType(str, Enum):
    WRITE = "WRITE"
    READ = "READ"


class LockManager:
    """
    Acquire and release instance locks.

    Usage:
        locks = LockManager(store, operator_id="10.0.0.5")
        await locks.lock(instance_id, resource.key, operation="update")
        ...
        await locks.unlock(instance_id)
    """

    def __init__(
        self,
        store: ResourceStoreClient,
        operator_id: str,
        ttl: int = DEFAULT_LOCK_TTL,
        clock: Callable = utcnow,
        max_unlock_attempts: int = MAX_RETRY_UNLOCK,
        retry_delay: float = RETRY_DELAY,
    ):
        self.store = store
        self.operator_id = operator_id
        self.ttl = ttl
        self._clock = clock
        self.max_unlock_attempts = max_unlock_attempts
        self.retry_delay = retry_delay

    @staticmethod
    def lock_key(instance_id: str) -> ResourceKey:
        return ResourceKey(ResourceGroup.LOCK, ResourceType.DEPLOYMENT_LOCKS, instance_id)

    def _lock_options(self, resource: ResourceKey, operation: str, lock_type: LockType) -> dict[str, Any]:
        return {
            "lockType": lock_type.value,
            "lockTime": self._clock().isoformat(),
            "lockTTL": self.ttl,
            "lockedBy": self.operator_id,
            "lockedResourceDetails": {**resource.to_dict(), "operation": operation},
        }

    def is_expired(self, lock: Resource) -> bool:
        lock_time = parse_timestamp(lock.options.get("lockTime"))
        if lock_time is None:
            return True
        ttl = lock.options.get("lockTTL", self.ttl)
        return lock_time + timedelta(seconds=ttl) < self._clock()

    async def lock(
        self,
        instance_id: str,
        resource: ResourceKey,
        operation: str,
        lock_type: LockType = LockType.WRITE,
    ) -> Resource:
        """
        Acquire the lock on an instance.

        An expired lock is taken over.

        Args:
            instance_id: Instance to lock
            resource: Resource on whose behalf the lock is taken
            operation: Operation name recorded in the lock
            lock_type: WRITE or READ

        Returns:
            The lock resource

        Raises:
            ResourceLockedError: If a live lock is held
        """
        key = self.lock_key(instance_id)
        options = self._lock_options(resource, operation, lock_type)
        try:
            acquired = await self.store.create_resource(Resource(
                key=key,
                labels={INSTANCE_GUID_LABEL: instance_id},
                options=options,
                status=ResourceStatus(description=f"Locked for {operation}"),
            ))
        except ConflictError:
            acquired = await self._take_over(key, options)
        logger.info(
            f"Acquired {lock_type.value} lock on {instance_id} for {operation}",
            extra={"resource": str(resource), "operator": self.operator_id, "event": "lock_acquired"},
        )
        return acquired

    async def _take_over(self, key: ResourceKey, options: dict[str, Any]) -> Resource:
        try:
            current = await self.store.get_resource(key)
        except NotFoundError:
            # Released between our create and this read
            raise ResourceLockedError(key.id) from None
        details = current.options.get("lockedResourceDetails", {})
        if not self.is_expired(current):
            raise ResourceLockedError(key.id, details)
        logger.warning(f"Lock on {key.id} held for {details.get('operation')} has expired, taking over")
        current.options = options
        current.status = ResourceStatus(description=f"Locked for {options['lockedResourceDetails']['operation']}")
        try:
            return await self.store.update_resource(current)
        except ConflictError:
            raise ResourceLockedError(key.id, details) from None

    async def unlock(self, instance_id: str) -> None:
        """
        Release the lock on an instance.

        A missing lock counts as released. Transient failures are retried.

        Raises:
            TransientError: If every attempt failed
        """
        key = self.lock_key(instance_id)
        attempt = 1
        while True:
            try:
                await self.store.delete_resource(key)
                logger.info(f"Released lock on {instance_id}", extra={"event": "lock_released"})
                return
            except NotFoundError:
                logger.debug(f"Lock on {instance_id} already released")
                return
            except TransientError as e:
                if attempt >= self.max_unlock_attempts:
                    logger.error(f"Could not release lock on {instance_id} after {attempt} attempts: {e}")
                    raise
                logger.warning(f"Unlock attempt {attempt} for {instance_id} failed: {e}")
                await asyncio.sleep(self.retry_delay)
                attempt += 1

    async def get_lock(self, instance_id: str) -> Optional[Resource]:
        """Return the live lock on an instance, or None."""
        try:
            lock = await self.store.get_resource(self.lock_key(instance_id))
        except NotFoundError:
            return None
        return None if self.is_expired(lock) else lock
