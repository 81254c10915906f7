"""Tests for the instance lock manager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from sfoperators.errors import BackendError, ResourceLockedError
from sfoperators.locks import LockManager, LockType
from sfoperators.schemas import ResourceKey

TARGET = ResourceKey("deployment.servicefabrik.io", "directors", "inst-1")


def _make_locks(store, clock, operator_id="op-1", ttl=60):
    return LockManager(store, operator_id, ttl=ttl, clock=clock, retry_delay=0)


class TestLock:
    def test_lock_records_holder(self, store, clock):
        async def scenario():
            locks = _make_locks(store, clock)
            lock = await locks.lock("inst-1", TARGET, "update")
            assert lock.key == LockManager.lock_key("inst-1")
            assert lock.options["lockedBy"] == "op-1"
            assert lock.options["lockType"] == LockType.WRITE.value
            assert lock.options["lockedResourceDetails"]["operation"] == "update"
            assert lock.options["lockedResourceDetails"]["resourceId"] == "inst-1"

        asyncio.run(scenario())

    def test_second_lock_is_rejected(self, store, clock):
        async def scenario():
            await _make_locks(store, clock, "op-1").lock("inst-1", TARGET, "update")
            with pytest.raises(ResourceLockedError) as exc_info:
                await _make_locks(store, clock, "op-2").lock("inst-1", TARGET, "backup")
            assert exc_info.value.locked_by["operation"] == "update"

        asyncio.run(scenario())

    def test_expired_lock_is_taken_over(self, store, clock):
        async def scenario():
            await _make_locks(store, clock, "op-1", ttl=60).lock("inst-1", TARGET, "update")
            clock.advance(61)
            lock = await _make_locks(store, clock, "op-2").lock("inst-1", TARGET, "backup")
            assert lock.options["lockedBy"] == "op-2"

        asyncio.run(scenario())

    def test_get_lock_ignores_expired(self, store, clock):
        async def scenario():
            locks = _make_locks(store, clock, ttl=60)
            assert await locks.get_lock("inst-1") is None
            await locks.lock("inst-1", TARGET, "update")
            assert (await locks.get_lock("inst-1")) is not None
            clock.advance(120)
            assert await locks.get_lock("inst-1") is None

        asyncio.run(scenario())


class TestUnlock:
    def test_unlock_releases(self, store, clock):
        async def scenario():
            locks = _make_locks(store, clock)
            await locks.lock("inst-1", TARGET, "update")
            await locks.unlock("inst-1")
            assert await locks.get_lock("inst-1") is None
            await locks.lock("inst-1", TARGET, "update")

        asyncio.run(scenario())

    def test_unlock_missing_lock_is_ok(self, store, clock):
        asyncio.run(_make_locks(store, clock).unlock("never-locked"))

    def test_unlock_retries_transient_errors(self, store, clock):
        async def scenario():
            locks = _make_locks(store, clock)
            await locks.lock("inst-1", TARGET, "update")
            real_delete = store.delete_resource
            store.delete_resource = AsyncMock(side_effect=[BackendError("down"), None])
            await locks.unlock("inst-1")
            assert store.delete_resource.await_count == 2
            store.delete_resource = real_delete

        asyncio.run(scenario())

    def test_unlock_gives_up(self, store, clock):
        async def scenario():
            locks = _make_locks(store, clock)
            store.delete_resource = AsyncMock(side_effect=BackendError("down"))
            with pytest.raises(BackendError):
                await locks.unlock("inst-1")
            assert store.delete_resource.await_count == locks.max_unlock_attempts

        asyncio.run(scenario())
