"""
Base status poller - timer-driven reconciliation of running resources.

Every ``poll_interval`` seconds the poller lists its resources in
IN_PROGRESS or ABORTING and, for each one:
1. forces FAILED (ABORTED for an abort) once the timeout has passed, even
   when the backend never answers
2. otherwise asks ``poll`` for the backend view and writes it only when the
   state or the last operation changed

A resource whose poll raises is logged and looked at again on the next tick;
it never stops the tick for the other resources, nor the poller itself.
Pollers never restart backend jobs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sfoperators.constants import (
    ABORT_REQUESTED_AT,
    MAX_CONFLICT_RETRIES,
    POLL_INTERVAL,
    PROCESSING_STARTED_AT,
    RETRY_DELAY,
)
from sfoperators.schemas import Resource, ResourceState, ResourceStatus
from sfoperators.status import write_status
from sfoperators.store import ResourceStoreClient, state_selector
from sfoperators.utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class BaseStatusPoller(ABC):
    """
    Abstract base class for status pollers.

    Subclasses set ``operator_type``, ``resource_group`` and ``resource_type``
    and implement ``poll``.
    """

    operator_type: str
    resource_group: str
    resource_type: str
    polled_states = (ResourceState.IN_PROGRESS, ResourceState.ABORTING)

    def __init__(
        self,
        store: ResourceStoreClient,
        timeout: float,
        poll_interval: float = POLL_INTERVAL,
        conflict_retries: int = MAX_CONFLICT_RETRIES,
        retry_delay: float = RETRY_DELAY,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.conflict_retries = conflict_retries
        self.retry_delay = retry_delay
        self.clock = clock
        self._shutdown: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return f"{self.operator_type}-poller"

    def _log_extra(self, resource: Optional[Resource] = None, event: str = "") -> dict[str, Any]:
        return {"operator": self.name, "resource": str(resource.key) if resource else None, "event": event}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        self._shutdown = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info(
            f"Started {self.name} every {self.poll_interval}s (timeout {self.timeout}s)",
            extra=self._log_extra(event="started"),
        )

    async def stop(self) -> None:
        if self._shutdown is not None:
            self._shutdown.set()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _run(self) -> None:
        while not self._shutdown.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def tick(self) -> int:
        """
        Poll every running resource once.

        Returns:
            Number of resources whose status was written
        """
        try:
            resources = await self.store.list_resources(
                self.resource_group,
                self.resource_type,
                label_selector=state_selector(self.polled_states),
            )
        except Exception as e:
            logger.error(f"Listing {self.resource_type} failed: {e}", extra=self._log_extra(event="list_error"))
            return 0

        written = 0
        for resource in resources:
            try:
                if await self.poll_resource(resource):
                    written += 1
            except Exception as e:
                logger.warning(
                    f"Polling {resource.key} failed, retrying next tick: {e}",
                    exc_info=True,
                    extra=self._log_extra(resource, "poll_error"),
                )
        return written

    async def poll_resource(self, resource: Resource) -> bool:
        """Reconcile one resource; returns True if its status was written."""
        if self.is_timed_out(resource):
            return await self.apply(resource, self.timeout_status(resource))

        status = await self.poll(resource)
        if status is None:
            return False
        if resource.state == ResourceState.ABORTING:
            if not (status.state.is_terminal or status.state == ResourceState.ABORTING):
                return False
            status = ResourceStatus(
                state=ResourceState.ABORTED,
                description=f"{self.describe(resource)} aborted ({status.description})",
                last_operation=status.last_operation,
                response=status.response,
            )
        elif status.state == ResourceState.ABORTING:
            status.state = ResourceState.IN_PROGRESS
        if status.state == resource.state and status.last_operation == resource.status.last_operation:
            return False
        return await self.apply(resource, status)

    def started_at(self, resource: Resource) -> Optional[datetime]:
        key = ABORT_REQUESTED_AT if resource.state == ResourceState.ABORTING else PROCESSING_STARTED_AT
        started = parse_timestamp(resource.operator_metadata.get(key))
        if started is None and key == ABORT_REQUESTED_AT:
            started = parse_timestamp(resource.operator_metadata.get(PROCESSING_STARTED_AT))
        return started or resource.created_at

    def is_timed_out(self, resource: Resource) -> bool:
        started = self.started_at(resource)
        if started is None:
            return False
        return self.clock() - started > timedelta(seconds=self.timeout)

    def timeout_status(self, resource: Resource) -> ResourceStatus:
        if resource.state == ResourceState.ABORTING:
            description = f"{self.describe(resource)} aborted: abort timeout after {self.timeout}s"
            state = ResourceState.ABORTED
        else:
            description = f"{self.describe(resource)} failed: timeout after {self.timeout}s in progress"
            state = ResourceState.FAILED
        return ResourceStatus(
            state=state,
            description=description,
            last_operation=resource.status.last_operation,
            response={"description": description, "error": "timeout"},
        )

    async def apply(self, resource: Resource, status: ResourceStatus) -> bool:
        updated = await self.write(resource, status)
        if updated is None:
            return False
        logger.info(
            f"{resource.key}: {resource.state.value} -> {status.state.value} ({status.description})",
            extra=self._log_extra(resource, status.state.value),
        )
        if status.state.is_terminal:
            await self.on_terminal(updated)
        return True

    async def write(self, resource: Resource, status: ResourceStatus) -> Optional[Resource]:
        """Conditional status write; subclasses may route it through a task."""
        return await write_status(
            self.store,
            resource.key,
            status,
            max_attempts=self.conflict_retries,
            retry_delay=self.retry_delay,
        )

    def describe(self, resource: Resource) -> str:
        return f"{resource.key.type} {resource.key.id}"

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def poll(self, resource: Resource) -> Optional[ResourceStatus]:
        """
        Backend view of a resource.

        Returns:
            The mapped status, or None if there is nothing to observe yet

        Raises:
            Exception: Logged; the resource is polled again next tick
        """
        pass

    async def on_terminal(self, resource: Resource) -> None:
        """Called once after a resource reached a terminal state."""
        pass
