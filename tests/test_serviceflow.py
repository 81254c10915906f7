"""Tests for serial service flows."""

import asyncio

import pytest

from sfoperators.backends import LocalBackupAgentClient, LocalDirectorClient
from sfoperators.constants import SERVICEFLOW_ID_LABEL, ResourceGroup, ResourceType
from sfoperators.engine import Engine
from sfoperators.errors import ConfigurationError, NotFoundError
from sfoperators.operators import OperatorType, flow_task_key
from sfoperators.operators.serviceflow_operator import flow_tasks
from sfoperators.schemas import ResourceKey, ResourceState, ResourceStatus

from conftest import make_resource, wait_for_state

FLOW_KEY = ResourceKey(ResourceGroup.SERVICEFLOW, ResourceType.SERIAL_SERVICE_FLOW, "flow-1")
GUID = "b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"


@pytest.fixture
def engine(test_config, store, clock):
    return Engine(test_config, store, director=LocalDirectorClient(), agent=LocalBackupAgentClient(), clock=clock)


async def _finish_backup_task(engine, store, task_key):
    """Drive a backup task and its backup to their terminal states."""
    await engine.operators[OperatorType.TASK].handle(task_key)
    task = await store.get_resource(task_key)
    backup_key = ResourceKey.from_dict(task.status.last_operation["resource"])
    await engine.operators[OperatorType.BACKUP].handle(backup_key)
    await engine.pollers[OperatorType.BACKUP].tick()
    await engine.pollers[OperatorType.TASK].tick()


class TestFlowTasks:
    def test_unknown_flow(self):
        flow = make_resource(FLOW_KEY, options={"serviceflow_name": "nope"})
        with pytest.raises(ConfigurationError, match="not configured"):
            flow_tasks({"known": [{"task_type": "BlueprintTask"}]}, flow)

    def test_unknown_flow_fails_resource(self, engine, store):
        async def scenario():
            await engine.submit_service_flow("nope", GUID, serviceflow_id="flow-1")
            await engine.operators[OperatorType.SERVICEFLOW].handle(FLOW_KEY)
            flow = await store.get_resource(FLOW_KEY)
            assert flow.state == ResourceState.FAILED
            assert "not configured" in flow.status.description

        asyncio.run(scenario())


class TestSerialExecution:
    def test_tasks_run_one_after_another(self, engine, store):
        async def scenario():
            await engine.submit_service_flow("backup_and_update", GUID, {"plan_id": "P"}, serviceflow_id="flow-1")
            await engine.operators[OperatorType.SERVICEFLOW].handle(FLOW_KEY)

            flow = await store.get_resource(FLOW_KEY)
            assert flow.state == ResourceState.IN_PROGRESS
            assert flow.status.last_operation == {"task_order": 0, "task_id": "flow-1.0", "total_tasks": 2}
            first = await store.get_resource(flow_task_key("flow-1", 0))
            assert first.labels[SERVICEFLOW_ID_LABEL] == "flow-1"
            assert first.options["task_type"] == "ServiceInstanceBackupTask"
            assert first.options["operation_params"] == {"plan_id": "P"}

            # Nothing advances while the current task runs
            assert await engine.pollers[OperatorType.SERVICEFLOW].tick() == 0
            with pytest.raises(NotFoundError):
                await store.get_resource(flow_task_key("flow-1", 1))

            await _finish_backup_task(engine, store, flow_task_key("flow-1", 0))
            assert await engine.pollers[OperatorType.SERVICEFLOW].tick() == 1
            flow = await store.get_resource(FLOW_KEY)
            assert flow.status.last_operation["task_order"] == 1
            second = await store.get_resource(flow_task_key("flow-1", 1))
            assert second.options["task_type"] == "ServiceInstanceUpdateTask"
            assert second.state == ResourceState.IN_QUEUE

        asyncio.run(scenario())

    def test_failed_task_fails_flow(self, engine, store):
        async def scenario():
            engine.agent.fail_backup("backup-1")
            await engine.submit_service_flow("backup_and_update", GUID, {"plan_id": "P"}, serviceflow_id="flow-1")
            await engine.operators[OperatorType.SERVICEFLOW].handle(FLOW_KEY)
            await _finish_backup_task(engine, store, flow_task_key("flow-1", 0))
            await engine.pollers[OperatorType.SERVICEFLOW].tick()

            flow = await store.get_resource(FLOW_KEY)
            assert flow.state == ResourceState.FAILED
            assert "task 1/2" in flow.status.description
            tasks = await store.list_resources(ResourceGroup.SERVICEFLOW, ResourceType.TASK)
            assert [t.key.id for t in tasks] == ["flow-1.0"]

        asyncio.run(scenario())

    def test_missing_task_is_recreated(self, engine, store):
        async def scenario():
            await engine.submit_service_flow("backup_and_update", GUID, {"plan_id": "P"}, serviceflow_id="flow-1")
            await engine.operators[OperatorType.SERVICEFLOW].handle(FLOW_KEY)
            await store.delete_resource(flow_task_key("flow-1", 0))
            await engine.pollers[OperatorType.SERVICEFLOW].tick()
            recreated = await store.get_resource(flow_task_key("flow-1", 0))
            assert recreated.state == ResourceState.IN_QUEUE

        asyncio.run(scenario())

    def test_whole_flow_with_running_engine(self, engine, store):
        for poller in engine.pollers.values():
            poller.poll_interval = 0.05

        async def scenario():
            await engine.submit_service_flow(
                "backup_and_update",
                GUID,
                {"plan_id": "P", "instance_groups": [{"name": "redis", "instances": 1, "azs": ["z1"]}]},
                serviceflow_id="flow-1",
            )
            await engine.start()
            try:
                flow = await wait_for_state(
                    store, FLOW_KEY, ResourceState.SUCCEEDED, ResourceState.FAILED, timeout=5,
                )
            finally:
                await engine.stop()
            assert flow.state == ResourceState.SUCCEEDED, flow.status.description
            assert list(engine.director.deployments) == [f"service-fabrik-0000-{GUID}"]

        asyncio.run(scenario())


class TestFlowAbort:
    def test_abort_is_forwarded_to_current_task(self, engine, store):
        async def scenario():
            await engine.submit_service_flow("backup_and_update", GUID, {"plan_id": "P"}, serviceflow_id="flow-1")
            await engine.operators[OperatorType.SERVICEFLOW].handle(FLOW_KEY)

            flow = await store.get_resource(FLOW_KEY)
            flow.status = ResourceStatus(ResourceState.ABORTING, "abort requested", flow.status.last_operation)
            await store.update_resource(flow)

            poller = engine.pollers[OperatorType.SERVICEFLOW]
            await poller.tick()
            task_key = flow_task_key("flow-1", 0)
            assert (await store.get_resource(task_key)).state == ResourceState.ABORTING

            await engine.operators[OperatorType.TASK].handle(task_key)
            assert (await store.get_resource(task_key)).state == ResourceState.ABORTED

            await poller.tick()
            assert (await store.get_resource(FLOW_KEY)).state == ResourceState.ABORTED

        asyncio.run(scenario())
