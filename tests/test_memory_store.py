"""Tests for InMemoryResourceStore: optimistic writes, labels and watches."""

import asyncio

import pytest

from sfoperators.constants import STATE_LABEL
from sfoperators.errors import ConflictError, ExpiredError, InvalidTransitionError, NotFoundError
from sfoperators.schemas import ResourceKey, ResourceState, ResourceStatus
from sfoperators.store import InMemoryResourceStore, WatchEventType

from conftest import make_resource

KEY = ResourceKey("backup.servicefabrik.io", "defaultbackups", "b-1")


def _key(n: int) -> ResourceKey:
    return ResourceKey("backup.servicefabrik.io", "defaultbackups", f"b-{n}")


async def _collect(stream, limit=None):
    events = []
    async for event in stream:
        events.append(event)
        if limit is not None and len(events) >= limit:
            break
    return events


class TestCrud:
    def test_create_assigns_version_and_state_label(self, store, clock):
        async def scenario():
            created = await store.create_resource(make_resource(KEY))
            assert created.resource_version == 1
            assert created.labels[STATE_LABEL] == "in_queue"
            assert created.created_at == clock()

        asyncio.run(scenario())

    def test_create_existing_conflicts(self, store):
        async def scenario():
            await store.create_resource(make_resource(KEY))
            with pytest.raises(ConflictError):
                await store.create_resource(make_resource(KEY))

        asyncio.run(scenario())

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(store.get_resource(KEY))

    def test_returned_resources_are_copies(self, store):
        async def scenario():
            created = await store.create_resource(make_resource(KEY, options={"a": 1}))
            created.options["a"] = 2
            assert (await store.get_resource(KEY)).options["a"] == 1

        asyncio.run(scenario())

    def test_stale_update_conflicts(self, store):
        async def scenario():
            first = await store.create_resource(make_resource(KEY))
            second = await store.get_resource(KEY)
            first.status = ResourceStatus(ResourceState.IN_PROGRESS)
            await store.update_resource(first)
            second.status = ResourceStatus(ResourceState.IN_PROGRESS)
            with pytest.raises(ConflictError):
                await store.update_resource(second)

        asyncio.run(scenario())

    def test_invalid_transition_rejected(self, store):
        async def scenario():
            created = await store.create_resource(make_resource(KEY))
            created.status = ResourceStatus(ResourceState.SUCCEEDED)
            with pytest.raises(InvalidTransitionError):
                await store.update_resource(created)

        asyncio.run(scenario())

    def test_update_moves_state_label(self, store):
        async def scenario():
            created = await store.create_resource(make_resource(KEY))
            created.status = ResourceStatus(ResourceState.IN_PROGRESS)
            updated = await store.update_resource(created)
            assert updated.labels[STATE_LABEL] == "in_progress"
            running = await store.list_resources(KEY.group, KEY.type, "state=in_progress")
            assert [r.key for r in running] == [KEY]

        asyncio.run(scenario())

    def test_patch_merges_and_removes_metadata(self, store):
        async def scenario():
            await store.create_resource(make_resource(KEY, operator_metadata={"a": 1, "b": 2}))
            patched = await store.patch_resource(KEY, {"b": None, "c": 3})
            assert patched.operator_metadata == {"a": 1, "c": 3}

        asyncio.run(scenario())

    def test_delete(self, store):
        async def scenario():
            await store.create_resource(make_resource(KEY))
            await store.delete_resource(KEY)
            with pytest.raises(NotFoundError):
                await store.get_resource(KEY)
            with pytest.raises(NotFoundError):
                await store.delete_resource(KEY)

        asyncio.run(scenario())

    def test_list_filters_by_type_and_selector(self, store):
        async def scenario():
            await store.create_resource(make_resource(_key(2), labels={"instance_guid": "x"}))
            await store.create_resource(make_resource(_key(1), labels={"instance_guid": "y"}))
            await store.create_resource(make_resource(ResourceKey("other", "defaultbackups", "b-3")))
            all_backups = await store.list_resources(KEY.group, KEY.type)
            assert [r.key.id for r in all_backups] == ["b-1", "b-2"]
            only_x = await store.list_resources(KEY.group, KEY.type, "instance_guid=x")
            assert [r.key.id for r in only_x] == ["b-2"]

        asyncio.run(scenario())


class TestWatch:
    def test_initial_listing_then_changes(self, store):
        async def scenario():
            await store.create_resource(make_resource(_key(1)))
            stream = store.watch(KEY.group, KEY.type, timeout_seconds=1)
            first = await stream.__anext__()
            assert first.type == WatchEventType.ADDED
            assert first.resource.key == _key(1)

            await store.create_resource(make_resource(_key(2)))
            second = await stream.__anext__()
            assert second.type == WatchEventType.ADDED
            assert second.resource.key == _key(2)
            await stream.aclose()

        asyncio.run(scenario())

    def test_resume_from_version_replays_missed_events(self, store):
        async def scenario():
            created = await store.create_resource(make_resource(_key(1)))
            await store.create_resource(make_resource(_key(2)))
            created.status = ResourceStatus(ResourceState.IN_PROGRESS)
            await store.update_resource(created)

            events = await _collect(store.watch(
                KEY.group, KEY.type, resource_version=1, timeout_seconds=0.05,
            ))
            assert [(e.type, e.resource.key.id) for e in events] == [
                (WatchEventType.ADDED, "b-2"),
                (WatchEventType.MODIFIED, "b-1"),
            ]
            assert [e.resource_version for e in events] == [2, 3]

        asyncio.run(scenario())

    def test_selector_filters_events(self, store):
        async def scenario():
            created = await store.create_resource(make_resource(_key(1)))
            created.status = ResourceStatus(ResourceState.IN_PROGRESS)
            await store.update_resource(created)
            events = await _collect(store.watch(
                KEY.group, KEY.type, label_selector="state in (in_queue,aborting)",
                resource_version=0, timeout_seconds=0.05,
            ))
            assert [e.resource_version for e in events] == [1]

        asyncio.run(scenario())

    def test_timeout_ends_stream(self, store):
        async def scenario():
            events = await asyncio.wait_for(
                _collect(store.watch(KEY.group, KEY.type, timeout_seconds=0.05)),
                timeout=2,
            )
            assert events == []

        asyncio.run(scenario())

    def test_disconnect_ends_open_streams(self, store):
        async def scenario():
            stream_task = asyncio.create_task(_collect(store.watch(KEY.group, KEY.type)))
            await asyncio.sleep(0.01)
            await store.disconnect_watchers()
            events = await asyncio.wait_for(stream_task, timeout=2)
            assert events == []

        asyncio.run(scenario())

    def test_delete_event(self, store):
        async def scenario():
            await store.create_resource(make_resource(_key(1)))
            await store.delete_resource(_key(1))
            events = await _collect(store.watch(
                KEY.group, KEY.type, resource_version=1, timeout_seconds=0.05,
            ))
            assert [e.type for e in events] == [WatchEventType.DELETED]

        asyncio.run(scenario())


class TestEventHistory:
    def test_log_keeps_only_recent_events(self, clock):
        async def scenario():
            store = InMemoryResourceStore(clock=clock, history=2)
            for n in range(1, 5):
                await store.create_resource(make_resource(_key(n)))
            events = await _collect(store.watch(
                KEY.group, KEY.type, resource_version=2, timeout_seconds=0.05,
            ))
            assert [e.resource_version for e in events] == [3, 4]

        asyncio.run(scenario())

    def test_resume_from_trimmed_version_expires(self, clock):
        async def scenario():
            store = InMemoryResourceStore(clock=clock, history=2)
            for n in range(1, 5):
                await store.create_resource(make_resource(_key(n)))
            with pytest.raises(ExpiredError, match="too old"):
                await _collect(store.watch(KEY.group, KEY.type, resource_version=1, timeout_seconds=0.05))

        asyncio.run(scenario())

    def test_relist_after_trim_sees_every_resource(self, clock):
        async def scenario():
            store = InMemoryResourceStore(clock=clock, history=1)
            for n in range(1, 4):
                await store.create_resource(make_resource(_key(n)))
            events = await _collect(store.watch(KEY.group, KEY.type, timeout_seconds=0.05))
            assert [e.resource.key.id for e in events] == ["b-1", "b-2", "b-3"]

        asyncio.run(scenario())

    def test_history_must_be_positive(self):
        with pytest.raises(ValueError, match="history"):
            InMemoryResourceStore(history=0)


def test_store_without_clock_uses_utc():
    store = InMemoryResourceStore()
    created = asyncio.run(store.create_resource(make_resource(KEY)))
    assert created.created_at.tzinfo is not None
