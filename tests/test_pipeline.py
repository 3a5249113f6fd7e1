"""Tests for forget_spine.pipeline: sharded update workers."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from forget_spine.core.errors import ConcurrentUpdateError, StoreUnavailableError
from forget_spine.core.logging import configure_logging
from forget_spine.core.settings import Settings
from forget_spine.pipeline import Job, OverflowPolicy, PipelineStats, UpdatePipeline
from forget_spine.store.adapter import fill
from forget_spine.store.memory import InMemoryStore

T0 = 1_700_000_000


class RacingStore(InMemoryStore):
    """Sneaks an increment in front of the first guarded write."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = 0

    async def write(self, name, values, *, expect=None):
        self.writes += 1
        if self.writes == 1:
            await self.increment(name, "hats", 2, now=T0)
        await super().write(name, values, expect=expect)


class GatedStore(InMemoryStore):
    """Holds every load until ``gate`` is set, recording the order of names."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.seen: list[str] = []

    async def get_all(self, name):
        self.seen.append(name)
        self.entered.set()
        await self.gate.wait()
        return await super().get_all(name)


def _failing_store(**side_effects) -> AsyncMock:
    store = AsyncMock()
    store.get_all.return_value = {}
    for method, effect in side_effects.items():
        getattr(store, method).side_effect = effect
    return store


class TestSharding:
    def test_same_name_same_worker(self):
        pipe = UpdatePipeline(InMemoryStore(), workers=4)
        assert pipe.shard_for("orders") == pipe.shard_for("orders")

    def test_shards_in_range_and_spread(self):
        pipe = UpdatePipeline(InMemoryStore(), workers=4)
        shards = {pipe.shard_for(f"dist-{i}") for i in range(100)}
        assert shards <= {0, 1, 2, 3}
        assert len(shards) > 1

    @pytest.mark.parametrize("kwargs", [{"workers": 0}, {"queue_size": 0}])
    def test_invalid_sizes(self, kwargs):
        with pytest.raises(ValueError):
            UpdatePipeline(InMemoryStore(), **kwargs)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_enqueue_before_start(self):
        pipe = UpdatePipeline(InMemoryStore())
        with pytest.raises(RuntimeError, match="not started"):
            await pipe.enqueue(Job.refresh("orders"))

    @pytest.mark.asyncio
    async def test_stop_drains_queued_jobs(self, clock):
        store = InMemoryStore({f"d{i}": {"x": 4, "_Z": 4, "_T": T0} for i in range(6)})
        clock.advance(1)
        pipe = UpdatePipeline(store, workers=3, queue_size=10, clock=clock)
        await pipe.start()

        for i in range(6):
            assert await pipe.enqueue(Job.refresh(f"d{i}"))
        await pipe.stop(drain=True)

        assert not pipe.running
        for i in range(6):
            assert store.snapshot(f"d{i}") == {"x": "2", "_Z": "2", "_T": str(T0 + 1)}
        assert pipe.stats().processed == 6
        assert pipe.stats().queued == 0

    @pytest.mark.asyncio
    async def test_start_twice_is_harmless(self):
        pipe = UpdatePipeline(InMemoryStore(), workers=2)
        await pipe.start()
        await pipe.start()
        assert pipe.running
        await pipe.stop()

    def test_from_settings(self):
        settings = Settings(nworkers=3, queue_size=7, overflow_policy="reject", default_rate=0.8)
        pipe = UpdatePipeline.from_settings(InMemoryStore(), settings)
        assert pipe.workers == 3
        assert pipe._queue_size == 7
        assert pipe._overflow is OverflowPolicy.REJECT
        assert pipe._default_rate == 0.8


class TestProcess:
    @pytest.mark.asyncio
    async def test_refresh_decays_and_persists(self, clock):
        store = InMemoryStore({"orders": {"shoes": 8, "hats": 4, "_Z": 12, "_T": T0}})
        clock.advance(1)
        pipe = UpdatePipeline(store, clock=clock)

        assert await pipe.process(Job.refresh("orders")) is True
        assert store.snapshot("orders") == {"shoes": "4", "hats": "2", "_Z": "6", "_T": str(T0 + 1)}

    @pytest.mark.asyncio
    async def test_refresh_uses_stored_rate(self, clock):
        store = InMemoryStore({"orders": {"shoes": 100, "_Z": 100, "_T": T0, "_R": "0.9"}})
        clock.advance(1)
        pipe = UpdatePipeline(store, default_rate=0.5, clock=clock)

        await pipe.process(Job.refresh("orders"))

        assert store.snapshot("orders")["shoes"] == "90"

    @pytest.mark.asyncio
    async def test_precomputed_snapshot_written_as_is(self, clock):
        store = InMemoryStore({"orders": {"shoes": 8, "_Z": 8, "_T": T0}})
        dist = await fill(store, "orders", default_rate=0.5)
        dist.rate = 0.25
        dist.decay(T0 + 1)
        clock.advance(100)
        pipe = UpdatePipeline(store, clock=clock)

        assert await pipe.process(Job.persist(dist)) is True
        assert store.snapshot("orders") == {"shoes": "2", "_Z": "2", "_T": str(T0 + 1)}

    @pytest.mark.asyncio
    async def test_conflict_reloads_and_retries(self, clock):
        store = RacingStore({"orders": {"shoes": 8, "_Z": 8, "_T": T0}})
        clock.advance(1)
        pipe = UpdatePipeline(store, clock=clock)

        assert await pipe.process(Job.refresh("orders")) is True

        # the racing increment survives and is decayed along with the rest
        assert store.snapshot("orders") == {"shoes": "4", "hats": "1", "_Z": "5", "_T": str(T0 + 1)}
        assert pipe.stats().conflicts == 1
        assert pipe.stats().processed == 1

    @pytest.mark.asyncio
    async def test_stale_snapshot_reloaded_with_stored_rate(self, clock):
        store = InMemoryStore({"orders": {"shoes": 8, "_Z": 8, "_T": T0, "_R": "0.5"}})
        dist = await fill(store, "orders", default_rate=0.5)
        dist.rate = 0.25
        dist.decay(T0 + 1)
        await store.increment("orders", "shoes", 1, now=T0)
        clock.advance(1)
        pipe = UpdatePipeline(store, clock=clock)

        assert await pipe.process(Job.persist(dist)) is True
        assert store.snapshot("orders")["shoes"] == "5"

    @pytest.mark.asyncio
    async def test_conflict_retries_exhausted(self, clock):
        store = _failing_store(write=ConcurrentUpdateError("changed"))
        pipe = UpdatePipeline(store, max_conflict_retries=2, clock=clock)

        assert await pipe.process(Job.refresh("orders")) is False
        assert store.write.await_count == 3
        assert pipe.stats().conflicts == 3
        assert pipe.stats().failed == 1

    @pytest.mark.asyncio
    async def test_store_failure_drops_job(self, clock):
        store = _failing_store(get_all=StoreUnavailableError("connection refused"))
        pipe = UpdatePipeline(store, clock=clock)

        assert await pipe.process(Job.refresh("orders")) is False
        store.write.assert_not_awaited()
        assert pipe.stats().failed == 1

    @pytest.mark.asyncio
    async def test_worker_survives_unexpected_error(self, clock):
        store = _failing_store(get_all=[RuntimeError("boom"), {}])
        pipe = UpdatePipeline(store, workers=1, clock=clock)
        await pipe.start()

        await pipe.enqueue(Job.refresh("orders"))
        await pipe.enqueue(Job.refresh("orders"))
        await pipe.stop(drain=True)

        assert pipe.stats().failed == 1
        assert pipe.stats().processed == 1


class TestOverflow:
    async def _saturate(self, policy: OverflowPolicy) -> tuple[UpdatePipeline, GatedStore]:
        store = GatedStore()
        pipe = UpdatePipeline(store, workers=1, queue_size=1, overflow=policy)
        await pipe.start()
        await pipe.enqueue(Job.refresh("a"))
        await store.entered.wait()
        await pipe.enqueue(Job.refresh("b"))
        return pipe, store

    @pytest.mark.asyncio
    async def test_reject(self):
        pipe, store = await self._saturate(OverflowPolicy.REJECT)

        assert await pipe.enqueue(Job.refresh("c")) is False
        assert pipe.stats().dropped == 1

        store.gate.set()
        await pipe.stop(drain=True)
        assert store.seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_drop_oldest(self):
        pipe, store = await self._saturate(OverflowPolicy.DROP_OLDEST)

        assert await pipe.enqueue(Job.refresh("c")) is True
        assert pipe.stats().dropped == 1

        store.gate.set()
        await pipe.stop(drain=True)
        assert store.seen == ["a", "c"]

    @pytest.mark.asyncio
    async def test_block_waits_for_room(self):
        pipe, store = await self._saturate(OverflowPolicy.BLOCK)

        pending = asyncio.create_task(pipe.enqueue(Job.refresh("c")))
        await asyncio.sleep(0.01)
        assert not pending.done()

        store.gate.set()
        assert await pending is True
        await pipe.stop(drain=True)
        assert store.seen == ["a", "b", "c"]
        assert pipe.stats().dropped == 0


class TestStats:
    def test_to_dict(self):
        assert PipelineStats(enqueued=2, processed=1).to_dict() == {
            "enqueued": 2,
            "processed": 1,
            "failed": 0,
            "dropped": 0,
            "conflicts": 0,
            "queued": 0,
        }


class TestWithLoggingConfigured:
    @pytest.mark.asyncio
    async def test_failing_job_logged_and_drain_completes(self, clock):
        configure_logging(level="INFO", json_format=True)
        store = _failing_store(get_all=[RuntimeError("boom"), {}])
        pipe = UpdatePipeline(store, workers=1, clock=clock)
        await pipe.start()

        await pipe.enqueue(Job.refresh("orders"))
        await pipe.enqueue(Job.refresh("orders"))
        await asyncio.wait_for(pipe.stop(drain=True), timeout=5)

        assert pipe.stats().failed == 1
        assert pipe.stats().processed == 1
