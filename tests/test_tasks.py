"""Tests for the task contract and concrete tasks."""

import asyncio

import pytest

from sfoperators.constants import INSTANCE_GUID_LABEL, ResourceGroup, ResourceType
from sfoperators.errors import ConflictError, InvalidInstanceIdError, NotFoundError, PermanentError
from sfoperators.schemas import ResourceKey, ResourceState, ResourceStatus, TaskDetails
from sfoperators.tasks import (
    BlueprintTask,
    ServiceInstanceBackupTask,
    ServiceInstanceUpdateTask,
    derive_resource_id,
)

from conftest import make_resource

GUID = "b4719e7c-e8d3-4f7f-a515-769ad1c3ebfa"


def _make_details(task_type="ServiceInstanceBackupTask", instance_id="inst-1", **params) -> TaskDetails:
    return TaskDetails(
        task_id="task-1",
        task_type=task_type,
        instance_id=instance_id,
        operation_params=params,
        user={"name": "admin"},
        task_description="Nightly backup",
    )


class TestBackupTask:
    def test_run_creates_backup_resource(self, store):
        async def scenario():
            task = ServiceInstanceBackupTask(store)
            result = await task.run("task-1", _make_details(plan_id="plan-small"))
            guid = derive_resource_id("task-1")
            assert result.resource == ResourceKey(ResourceGroup.BACKUP, ResourceType.DEFAULT_BACKUP, guid)
            assert result.response["backup_guid"] == guid

            backup = await store.get_resource(result.resource)
            assert backup.state == ResourceState.IN_QUEUE
            assert backup.labels[INSTANCE_GUID_LABEL] == "inst-1"
            assert backup.options["plan_id"] == "plan-small"
            assert backup.options["instance_guid"] == "inst-1"
            assert backup.options["type"] == "online"

        asyncio.run(scenario())

    def test_run_is_idempotent_per_task_id(self, store):
        async def scenario():
            task = ServiceInstanceBackupTask(store)
            first = await task.run("task-1", _make_details(plan_id="p"))
            second = await task.run("task-1", _make_details(plan_id="p"))
            assert first.resource == second.resource
            backups = await store.list_resources(ResourceGroup.BACKUP, ResourceType.DEFAULT_BACKUP)
            assert len(backups) == 1

        asyncio.run(scenario())

    def test_run_requires_plan(self, store):
        with pytest.raises(PermanentError, match="plan_id"):
            asyncio.run(ServiceInstanceBackupTask(store).run("task-1", _make_details()))


class TestDeploymentTasks:
    @pytest.mark.parametrize("task_class,operation", [
        (ServiceInstanceUpdateTask, "update"),
        (BlueprintTask, "blueprint"),
    ])
    def test_run_creates_director_resource(self, store, task_class, operation):
        async def scenario():
            task = task_class(store)
            result = await task.run("task-1", _make_details(task_class.task_type.value, GUID, plan_id="p"))
            resource = await store.get_resource(result.resource)
            assert resource.key.type == ResourceType.DIRECTOR
            assert resource.options["operation"] == operation
            assert resource.options["instance_id"] == GUID
            assert resource.labels[INSTANCE_GUID_LABEL] == GUID
            assert resource.options["plan_id"] == "p"
            assert resource.labels["operation"] == operation

        asyncio.run(scenario())

    @pytest.mark.parametrize("instance_id", ["inst-1", GUID.upper(), f"{GUID}-2"])
    def test_run_rejects_instance_id_that_cannot_name_a_deployment(self, store, instance_id):
        async def scenario():
            task = ServiceInstanceUpdateTask(store)
            with pytest.raises(InvalidInstanceIdError, match="not a lowercase guid"):
                await task.run("task-1", _make_details("ServiceInstanceUpdateTask", instance_id))
            assert await store.list_resources(ResourceGroup.DEPLOYMENT, ResourceType.DIRECTOR) == []

        asyncio.run(scenario())


class TestStatus:
    def test_get_status_reads_created_resource(self, store):
        async def scenario():
            task = ServiceInstanceBackupTask(store)
            details = await task.run("task-1", _make_details(plan_id="p"))
            before = store.revision
            status = await task.get_status("task-1", details)
            assert status.state == ResourceState.IN_QUEUE
            assert store.revision == before

        asyncio.run(scenario())

    def test_get_status_without_resource(self, store):
        task = ServiceInstanceBackupTask(store)
        with pytest.raises(PermanentError, match="no resource"):
            asyncio.run(task.get_status("task-1", _make_details()))

    def test_get_status_of_deleted_resource(self, store):
        async def scenario():
            task = ServiceInstanceBackupTask(store)
            details = await task.run("task-1", _make_details(plan_id="p"))
            await store.delete_resource(details.resource)
            with pytest.raises(NotFoundError):
                await task.get_status("task-1", details)

        asyncio.run(scenario())

    def test_update_status_is_optimistic(self, store):
        async def scenario():
            key = ResourceKey(ResourceGroup.SERVICEFLOW, ResourceType.TASK, "task-1")
            stale = await store.create_resource(make_resource(key))
            task = ServiceInstanceBackupTask(store)

            fresh = await task.update_status(stale, ResourceStatus(ResourceState.IN_PROGRESS, "running"))
            assert fresh.state == ResourceState.IN_PROGRESS
            with pytest.raises(ConflictError):
                await task.update_status(stale, ResourceStatus(ResourceState.ABORTING))

        asyncio.run(scenario())
