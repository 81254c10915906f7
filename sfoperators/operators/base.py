"""
Base operator - watch, claim and execute resources of one type.

Each operator runs:
- one watch loop over ``state in (in_queue,aborting)`` for its resource
  type; when the stream ends (expiry or transport error) it is reopened from
  the last seen resource version
- a fixed pool of workers fed by a queue, so a burst of new resources waits
  in the queue instead of spawning work without bound

A worker re-reads the resource, claims it with a conditional update to
IN_PROGRESS (losing the race is a silent skip) and hands it to ``process``.
Whatever ``process`` raises is recorded as FAILED on the resource; nothing
reaches the watch loop.

Cancellation is cooperative: ``process`` implementations call
``is_abort_requested`` before each backend call, and ABORTING resources are
routed to ``abort``. An abort that arrives while this process is still in
``process`` for the same resource waits for it: the backend job it started
is recorded on the ABORTING resource first, so ``abort`` and the poller see it.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Optional

from sfoperators.constants import (
    ABORT_REQUESTED_AT,
    DEFAULT_WORKER_LIMIT,
    LOCKED_BY_MANAGER,
    MAX_CONFLICT_RETRIES,
    PROCESSING_STARTED_AT,
    RETRY_DELAY,
    WATCH_TIMEOUT,
    WATCHER_ERROR_DELAY,
)
from sfoperators.errors import ConflictError, ExpiredError, InvalidTransitionError, NotFoundError, OperatorsError
from sfoperators.schemas import Resource, ResourceKey, ResourceState, ResourceStatus
from sfoperators.status import write_status
from sfoperators.store import ResourceStoreClient, WatchEventType, state_selector
from sfoperators.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """
    Typed result of processing one claimed resource.

    Attributes:
        status: Status to record on the resource
        metadata: Operator metadata to merge in the same write
    """
    status: ResourceStatus
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def in_progress(
        cls,
        description: str,
        last_operation: Optional[dict[str, Any]] = None,
        response: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "Outcome":
        return cls(
            ResourceStatus(
                state=ResourceState.IN_PROGRESS,
                description=description,
                last_operation=last_operation or {},
                response=response or {},
            ),
            metadata or {},
        )

    @classmethod
    def failed(cls, description: str, error: Optional[BaseException] = None) -> "Outcome":
        response = {"description": description}
        if error is not None:
            response.update({"error": type(error).__name__, "message": str(error)})
        return cls(ResourceStatus(state=ResourceState.FAILED, description=description, response=response))

    @classmethod
    def aborted(cls, description: str) -> "Outcome":
        return cls(ResourceStatus(
            state=ResourceState.ABORTED,
            description=description,
            response={"description": description},
        ))


class BaseOperator(ABC):
    """
    Abstract base class for operators.

    Subclasses set ``operator_type``, ``resource_group`` and ``resource_type``
    and implement ``process``.
    """

    operator_type: str
    resource_group: str
    resource_type: str
    watched_states = (ResourceState.IN_QUEUE, ResourceState.ABORTING)

    def __init__(
        self,
        store: ResourceStoreClient,
        operator_id: str,
        worker_limit: int = DEFAULT_WORKER_LIMIT,
        watch_timeout: float = WATCH_TIMEOUT,
        watch_error_delay: float = WATCHER_ERROR_DELAY,
        conflict_retries: int = MAX_CONFLICT_RETRIES,
        retry_delay: float = RETRY_DELAY,
        clock: Callable = utcnow,
    ):
        if worker_limit < 1:
            raise ValueError(f"worker_limit must be >= 1, got {worker_limit}")
        self.store = store
        self.operator_id = operator_id
        self.worker_limit = worker_limit
        self.watch_timeout = watch_timeout
        self.watch_error_delay = watch_error_delay
        self.conflict_retries = conflict_retries
        self.retry_delay = retry_delay
        self.clock = clock

        self.bookmark: Optional[int] = None
        self.watch_restarts = 0
        self._queue: Optional[asyncio.Queue] = None
        self._queued: set[ResourceKey] = set()
        # Keys being claimed or processed by this process, and aborts waiting on them
        self._in_flight: Counter = Counter()
        self._abort_pending: set[ResourceKey] = set()
        self._shutdown: Optional[asyncio.Event] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return f"{self.operator_type}-operator"

    def _log_extra(self, key: Optional[ResourceKey] = None, event: str = "") -> dict[str, Any]:
        return {"operator": self.name, "resource": str(key) if key else None, "event": event}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the watch loop and the worker pool."""
        self._shutdown = asyncio.Event()
        self._queue = asyncio.Queue()
        for number in range(self.worker_limit):
            self._spawn(self._worker(number), f"{self.name}-worker-{number}")
        self._spawn(self._watch_loop(), f"{self.name}-watch")
        logger.info(
            f"Started {self.name} on {self.resource_group}/{self.resource_type} "
            f"with {self.worker_limit} workers",
            extra=self._log_extra(event="started"),
        )

    async def stop(self) -> None:
        """Stop watching and cancel workers; in-flight work is abandoned."""
        if self._shutdown is not None:
            self._shutdown.set()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info(f"Stopped {self.name}", extra=self._log_extra(event="stopped"))

    async def drain(self) -> None:
        """Wait until every queued resource has been handled."""
        if self._queue is not None:
            await self._queue.join()

    def _spawn(self, coro: Coroutine, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"{task.get_name()} crashed: {task.exception()!r}",
                extra=self._log_extra(event="task_crashed"),
            )

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Watch loop and workers
    # -------------------------------------------------------------------------

    async def _watch_loop(self) -> None:
        selector = state_selector(self.watched_states)
        while not self._shutdown.is_set():
            try:
                async for event in self.store.watch(
                    self.resource_group,
                    self.resource_type,
                    label_selector=selector,
                    resource_version=self.bookmark,
                    timeout_seconds=self.watch_timeout,
                ):
                    self.bookmark = event.resource_version
                    if event.type in (WatchEventType.ADDED, WatchEventType.MODIFIED) and event.resource:
                        self.enqueue(event.resource.key)
                logger.debug(
                    f"Watch on {self.resource_type} closed at version {self.bookmark}, re-establishing",
                    extra=self._log_extra(event="watch_closed"),
                )
            except asyncio.CancelledError:
                raise
            except ExpiredError as e:
                logger.warning(
                    f"Watch on {self.resource_type} expired: {e}. Relisting",
                    extra=self._log_extra(event="watch_expired"),
                )
                self.bookmark = None
            except Exception as e:
                logger.error(
                    f"Watch on {self.resource_type} failed: {e}. Retrying in {self.watch_error_delay}s",
                    exc_info=True,
                    extra=self._log_extra(event="watch_error"),
                )
                await self._sleep(self.watch_error_delay)
            self.watch_restarts += 1

    def enqueue(self, key: ResourceKey) -> None:
        """Queue a resource for the workers unless it is already waiting."""
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    async def _worker(self, number: int) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            try:
                await self.handle(key)
            except Exception as e:
                logger.error(
                    f"Worker {number} could not handle {key}: {e}",
                    exc_info=True,
                    extra=self._log_extra(key, "handle_error"),
                )
            finally:
                self._queue.task_done()

    async def handle(self, key: ResourceKey) -> None:
        """Route a resource by its current state."""
        try:
            resource = await self.store.get_resource(key)
        except NotFoundError:
            return
        if resource.state == ResourceState.IN_QUEUE:
            await self._claim_and_execute(resource)
        elif resource.state == ResourceState.ABORTING:
            if key in self._in_flight:
                # Handled once the running backend call has returned
                self._abort_pending.add(key)
                logger.debug(
                    f"Abort of {key} deferred until processing returns",
                    extra=self._log_extra(key, "abort_deferred"),
                )
                return
            await self.execute_abort(resource)

    async def _claim_and_execute(self, resource: Resource) -> None:
        key = resource.key
        self._in_flight[key] += 1
        try:
            claimed = await self.claim(resource)
            if claimed is not None:
                await self.execute(claimed)
        finally:
            self._in_flight[key] -= 1
            if self._in_flight[key] == 0:
                del self._in_flight[key]
        if key not in self._in_flight and key in self._abort_pending:
            self._abort_pending.discard(key)
            await self.handle(key)

    # -------------------------------------------------------------------------
    # Claim, execute, record
    # -------------------------------------------------------------------------

    async def claim(self, resource: Resource) -> Optional[Resource]:
        """
        Take exclusive ownership of a queued resource.

        Returns:
            The claimed resource, or None if another worker or replica won
        """
        if resource.state != ResourceState.IN_QUEUE:
            return None
        claimed = resource.copy()
        claimed.status = ResourceStatus(
            state=ResourceState.IN_PROGRESS,
            description=f"{self.describe(resource)} claimed by {self.operator_id}",
        )
        claimed.operator_metadata[LOCKED_BY_MANAGER] = self.operator_id
        claimed.operator_metadata[PROCESSING_STARTED_AT] = self.clock().isoformat()
        try:
            updated = await self.store.update_resource(claimed)
        except (ConflictError, InvalidTransitionError, NotFoundError):
            logger.debug(
                f"{resource.key} was picked by another worker, skipping",
                extra=self._log_extra(resource.key, "claim_lost"),
            )
            return None
        logger.info(f"Claimed {resource.key}", extra=self._log_extra(resource.key, "claimed"))
        return updated

    async def execute(self, resource: Resource) -> None:
        """Process a claimed resource and record the outcome."""
        try:
            outcome = await self.process(resource)
        except Exception as e:
            logger.error(
                f"Processing {resource.key} failed: {e}",
                exc_info=True,
                extra=self._log_extra(resource.key, "failed"),
            )
            outcome = Outcome.failed(f"{self.describe(resource)} failed: {e}", error=e)
        if await self.record(resource.key, outcome) is None:
            await self._settle_after_abort(resource.key, outcome)

    async def _settle_after_abort(self, key: ResourceKey, outcome: Outcome) -> None:
        """Keep the result of a backend call that returned after an abort request."""
        try:
            current = await self.store.get_resource(key)
        except NotFoundError:
            return
        if current.state != ResourceState.ABORTING:
            return
        if outcome.status.state != ResourceState.IN_PROGRESS:
            await self.record(key, Outcome.aborted(f"{self.describe(current)} aborted: {outcome.status.description}"))
            return
        # A backend job was started: record it so the abort and the poller can reach it
        status = ResourceStatus(
            state=ResourceState.ABORTING,
            description=f"{self.describe(current)} is aborting",
            last_operation=outcome.status.last_operation,
            response=outcome.status.response,
        )
        if await self.record(key, Outcome(status, outcome.metadata)) is not None:
            logger.info(
                f"Backend job of {key} started while aborting, recorded for the abort",
                extra=self._log_extra(key, "late_start"),
            )
            self._abort_pending.add(key)

    async def execute_abort(self, resource: Resource) -> None:
        """Handle a cancellation request once per resource."""
        if ABORT_REQUESTED_AT in resource.operator_metadata:
            return
        marked = resource.copy()
        marked.operator_metadata[ABORT_REQUESTED_AT] = self.clock().isoformat()
        try:
            marked = await self.store.update_resource(marked)
        except (ConflictError, NotFoundError):
            return
        logger.info(f"Abort requested for {resource.key}", extra=self._log_extra(resource.key, "abort"))
        try:
            outcome = await self.abort(marked)
        except Exception as e:
            # The poller keeps driving the resource and its abort timeout applies
            logger.error(
                f"Aborting {resource.key} failed: {e}",
                exc_info=True,
                extra=self._log_extra(resource.key, "abort_error"),
            )
            return
        if outcome is not None:
            if not outcome.status.last_operation:
                outcome.status.last_operation = marked.status.last_operation
            await self.record(resource.key, outcome)

    async def record(self, key: ResourceKey, outcome: Outcome) -> Optional[Resource]:
        """Write an outcome; a failed write is left to the poller's timeout."""
        try:
            return await write_status(
                self.store,
                key,
                outcome.status,
                operator_metadata=outcome.metadata,
                max_attempts=self.conflict_retries,
                retry_delay=self.retry_delay,
            )
        except OperatorsError as e:
            logger.error(
                f"Could not record {outcome.status.state.value} on {key}: {e}",
                extra=self._log_extra(key, "record_error"),
            )
            return None

    async def is_abort_requested(self, key: ResourceKey) -> bool:
        """Cooperative cancellation check, made before each backend call."""
        current = await self.store.get_resource(key)
        return current.state == ResourceState.ABORTING

    def describe(self, resource: Resource) -> str:
        return f"{resource.key.type} {resource.key.id}"

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    @abstractmethod
    async def process(self, resource: Resource) -> Outcome:
        """
        Initiate the work for a claimed resource.

        Args:
            resource: The claimed resource (state IN_PROGRESS)

        Returns:
            Outcome to record; usually IN_PROGRESS with the backend job id

        Raises:
            Exception: Recorded as FAILED by the caller
        """
        pass

    async def abort(self, resource: Resource) -> Optional[Outcome]:
        """
        Cancel the work for a resource in ABORTING.

        Returns:
            Outcome to record now, or None to let the poller observe the abort
        """
        return Outcome.aborted(f"{self.describe(resource)} aborted")
