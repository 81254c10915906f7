"""
Engine - wires the resource store, task registry, operators and pollers.

Operator types form a closed table; each enabled type contributes one
operator and its status poller. Configured task types are checked against
the task registry when the engine is built, so a misconfiguration fails at
startup instead of at the first request.
"""

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from sfoperators.backends import BackupAgentClient, DirectorClient
from sfoperators.config import OperatorsConfig
from sfoperators.constants import INSTANCE_GUID_LABEL, ResourceGroup, ResourceType
from sfoperators.locks import LockManager
from sfoperators.operators import (
    BackupOperator,
    BaseOperator,
    DeploymentOperator,
    OperatorType,
    RestoreOperator,
    ServiceFlowOperator,
    TaskOperator,
)
from sfoperators.planner import ManifestPlanner, NetworkSegmentIndex, require_instance_guid
from sfoperators.pollers import (
    BackupStatusPoller,
    BaseStatusPoller,
    DeploymentStatusPoller,
    RestoreStatusPoller,
    ServiceFlowPoller,
    TaskStatusPoller,
)
from sfoperators.schemas import Resource, ResourceKey, ResourceStatus, TaskDetails
from sfoperators.store import ResourceStoreClient
from sfoperators.tasks import TaskRegistry
from sfoperators.utils import utcnow

logger = logging.getLogger(__name__)


class Engine:
    """
    Runs the enabled operators and pollers of one process.

    Usage:
        engine = Engine(config, store, director=director, agent=agent)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        config: OperatorsConfig,
        store: ResourceStoreClient,
        director: Optional[DirectorClient] = None,
        agent: Optional[BackupAgentClient] = None,
        clock: Callable = utcnow,
    ):
        self.config = config
        self.store = store
        self.director = director
        self.agent = agent
        self.clock = clock

        self.registry = TaskRegistry(store)
        self.registry.validate(config.configured_task_types())
        self.locks = LockManager(
            store,
            config.operator_id,
            ttl=config.lock_ttl,
            clock=clock,
            retry_delay=config.retry_delay,
        )
        self.planner = ManifestPlanner(config.networks, config.segmentation, config.network_name)
        self.segment_index = NetworkSegmentIndex(config.networks, config.segmentation)

        builders = {
            OperatorType.TASK: self._build_task,
            OperatorType.BACKUP: self._build_backup,
            OperatorType.RESTORE: self._build_restore,
            OperatorType.DEPLOYMENT: self._build_deployment,
            OperatorType.SERVICEFLOW: self._build_serviceflow,
        }
        self.operators: dict[OperatorType, BaseOperator] = {}
        self.pollers: dict[OperatorType, BaseStatusPoller] = {}
        for name in config.operators:
            operator_type = OperatorType(name)
            operator, poller = builders[operator_type]()
            self.operators[operator_type] = operator
            self.pollers[operator_type] = poller

    # -------------------------------------------------------------------------
    # Operator table
    # -------------------------------------------------------------------------

    def _operator_kwargs(self) -> dict[str, Any]:
        return {
            "operator_id": self.config.operator_id,
            "worker_limit": self.config.worker_limit,
            "watch_timeout": self.config.watch_timeout,
            "watch_error_delay": self.config.watch_error_delay,
            "conflict_retries": self.config.conflict_retries,
            "retry_delay": self.config.retry_delay,
            "clock": self.clock,
        }

    def _poller_kwargs(self, operator_type: OperatorType) -> dict[str, Any]:
        return {
            "timeout": self.config.timeout_for(operator_type.value),
            "poll_interval": self.config.poll_interval,
            "conflict_retries": self.config.conflict_retries,
            "retry_delay": self.config.retry_delay,
            "clock": self.clock,
        }

    def _require(self, client: Any, name: str, operator_type: OperatorType) -> Any:
        if client is None:
            raise ValueError(f"The {operator_type.value} operator needs a {name} client")
        return client

    def _build_task(self):
        return (
            TaskOperator(self.store, self.registry, **self._operator_kwargs()),
            TaskStatusPoller(self.store, self.registry, **self._poller_kwargs(OperatorType.TASK)),
        )

    def _build_backup(self):
        agent = self._require(self.agent, "backup agent", OperatorType.BACKUP)
        return (
            BackupOperator(self.store, agent, **self._operator_kwargs()),
            BackupStatusPoller(self.store, agent, **self._poller_kwargs(OperatorType.BACKUP)),
        )

    def _build_restore(self):
        agent = self._require(self.agent, "backup agent", OperatorType.RESTORE)
        return (
            RestoreOperator(self.store, agent, self.locks, **self._operator_kwargs()),
            RestoreStatusPoller(self.store, agent, self.locks, **self._poller_kwargs(OperatorType.RESTORE)),
        )

    def _build_deployment(self):
        director = self._require(self.director, "director", OperatorType.DEPLOYMENT)
        operator = DeploymentOperator(
            self.store,
            director,
            self.planner,
            self.segment_index,
            self.locks,
            **self._operator_kwargs(),
        )
        poller = DeploymentStatusPoller(
            self.store,
            director,
            self.locks,
            operator.deployment_names,
            **self._poller_kwargs(OperatorType.DEPLOYMENT),
        )
        return operator, poller

    def _build_serviceflow(self):
        return (
            ServiceFlowOperator(self.store, self.config.service_flows, **self._operator_kwargs()),
            ServiceFlowPoller(self.store, self.config.service_flows, **self._poller_kwargs(OperatorType.SERVICEFLOW)),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        for operator in self.operators.values():
            await operator.start()
        for poller in self.pollers.values():
            await poller.start()
        logger.info(f"Engine {self.config.operator_id} running {[t.value for t in self.operators]}")

    async def stop(self) -> None:
        for poller in self.pollers.values():
            await poller.stop()
        for operator in self.operators.values():
            await operator.stop()
        logger.info(f"Engine {self.config.operator_id} stopped")

    async def run(self, duration: Optional[float] = None) -> None:
        """Run until cancelled, or for ``duration`` seconds."""
        await self.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            await self.stop()

    # -------------------------------------------------------------------------
    # Requests
    # -------------------------------------------------------------------------

    async def submit_task(
        self,
        task_type: str,
        instance_id: str,
        operation_params: Optional[dict[str, Any]] = None,
        user: Optional[dict[str, Any]] = None,
        task_id: Optional[str] = None,
        task_description: str = "",
    ) -> Resource:
        """
        Queue a task resource.

        Raises:
            UnknownTaskTypeError: If the task type is not registered
            InvalidInstanceIdError: If the task names a deployment and the
                instance id is not a guid
        """
        task = self.registry.get_task(task_type)
        if task.names_deployment:
            require_instance_guid(instance_id)
        task_id = task_id or str(uuid.uuid4())
        details = TaskDetails(
            task_id=task_id,
            task_type=task.task_type.value,
            instance_id=instance_id,
            operation_params=dict(operation_params or {}),
            user=dict(user or {}),
            task_description=task_description or task.task_type.value,
        )
        return await self.store.create_resource(Resource(
            key=ResourceKey(ResourceGroup.SERVICEFLOW, ResourceType.TASK, task_id),
            labels={INSTANCE_GUID_LABEL: instance_id},
            options=details.to_dict(),
            status=ResourceStatus(description=f"{details.description} is queued"),
        ))

    async def submit_service_flow(
        self,
        serviceflow_name: str,
        instance_id: str,
        operation_params: Optional[dict[str, Any]] = None,
        user: Optional[dict[str, Any]] = None,
        serviceflow_id: Optional[str] = None,
    ) -> Resource:
        """
        Queue a serial service flow resource.

        Raises:
            InvalidInstanceIdError: If a task of the flow names a deployment
                and the instance id is not a guid
        """
        for spec in self.config.service_flows.get(serviceflow_name, []):
            if self.registry.get_task(spec["task_type"]).names_deployment:
                require_instance_guid(instance_id)
                break
        serviceflow_id = serviceflow_id or str(uuid.uuid4())
        return await self.store.create_resource(Resource(
            key=ResourceKey(ResourceGroup.SERVICEFLOW, ResourceType.SERIAL_SERVICE_FLOW, serviceflow_id),
            labels={INSTANCE_GUID_LABEL: instance_id},
            options={
                "serviceflow_name": serviceflow_name,
                "instance_id": instance_id,
                "operation_params": dict(operation_params or {}),
                "user": dict(user or {}),
            },
            status=ResourceStatus(description=f"Service flow {serviceflow_name} is queued"),
        ))
