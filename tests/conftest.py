import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sfoperators.config import OperatorsConfig
from sfoperators.constants import PROCESSING_STARTED_AT
from sfoperators.planner import Segmentation
from sfoperators.schemas import Resource, ResourceKey, ResourceState, ResourceStatus
from sfoperators.store import InMemoryResourceStore


class FakeClock:
    """Controllable clock for timeouts and lock TTLs."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryResourceStore(clock=clock)


@pytest.fixture
def networks():
    return [{
        "name": "default",
        "type": "manual",
        "subnets": [
            {"range": "10.11.0.0/24", "az": "z1", "dns": ["10.11.0.2"]},
            {"range": "10.11.1.0/24", "az": "z2", "dns": ["10.11.0.2"]},
        ],
    }]


@pytest.fixture
def test_config(networks):
    return OperatorsConfig(
        operator_id="operator-1",
        worker_limit=2,
        watch_timeout=1,
        watch_error_delay=0,
        poll_interval=1,
        retry_delay=0,
        networks=networks,
        segmentation=Segmentation(offset=1, size=8),
        service_flows={
            "backup_and_update": [
                {"task_type": "ServiceInstanceBackupTask", "task_description": "Backup"},
                {"task_type": "ServiceInstanceUpdateTask", "task_description": "Update"},
            ],
        },
    )


def make_resource(
    key: ResourceKey,
    state: ResourceState = ResourceState.IN_QUEUE,
    options: dict | None = None,
    labels: dict | None = None,
    last_operation: dict | None = None,
    operator_metadata: dict | None = None,
) -> Resource:
    return Resource(
        key=key,
        labels=dict(labels or {}),
        options=dict(options or {}),
        status=ResourceStatus(state=state, last_operation=dict(last_operation or {})),
        operator_metadata=dict(operator_metadata or {}),
    )


async def seed(store: InMemoryResourceStore, resource: Resource, *states: ResourceState) -> Resource:
    """Create a resource and walk it through ``states`` with valid transitions."""
    stored = await store.create_resource(resource)
    for state in states:
        stored.status = ResourceStatus(state=state, last_operation=resource.status.last_operation)
        stored = await store.update_resource(stored)
    return stored


async def seed_running(store, clock, key, options=None, last_operation=None, labels=None) -> Resource:
    """Create a resource already claimed and IN_PROGRESS."""
    resource = make_resource(
        key,
        options=options,
        labels=labels,
        last_operation=last_operation,
        operator_metadata={PROCESSING_STARTED_AT: clock().isoformat()},
    )
    return await seed(store, resource, ResourceState.IN_PROGRESS)


async def wait_for_state(store, key, *states: ResourceState, timeout: float = 3.0) -> Resource:
    """Poll the store until a resource reaches one of ``states``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        try:
            resource = await store.get_resource(key)
            if resource.state in states:
                return resource
        except Exception:
            resource = None
        if loop.time() > deadline:
            raise AssertionError(f"{key} did not reach {states}; last seen {resource and resource.state}")
        await asyncio.sleep(0.01)
