"""Tests for forget_spine.store.adapter: fill and persist."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from forget_spine.core.errors import (
    ConcurrentUpdateError,
    FieldParseError,
    StoreUnavailableError,
)
from forget_spine.store.adapter import fill, parse_count, parse_rate, persist
from forget_spine.store.memory import InMemoryStore

T = 1_700_000_000


class TestFill:
    @pytest.mark.asyncio
    async def test_partitions_fields(self):
        store = InMemoryStore({"orders": {"shoes": 7, "hats": 3, "_Z": 10, "_T": T, "_R": "0.9"}})

        dist = await fill(store, "orders", default_rate=0.5)

        assert dist.data == {"shoes": 7, "hats": 3}
        assert dist.total == 10
        assert dist.last_update == T
        assert dist.rate == 0.9
        assert dist.revision == ("10", str(T))

    @pytest.mark.asyncio
    async def test_total_recomputed_not_trusted(self):
        store = InMemoryStore({"orders": {"shoes": 7, "hats": 3, "_Z": 9999}})

        dist = await fill(store, "orders", default_rate=0.5)

        assert dist.total == 10
        assert dist.revision == ("9999", None)

    @pytest.mark.asyncio
    async def test_missing_distribution_is_empty(self):
        dist = await fill(InMemoryStore(), "nothing", default_rate=0.5)

        assert dist.data == {}
        assert dist.total == 0
        assert dist.last_update is None
        assert dist.rate == 0.5
        assert dist.revision == (None, None)

    @pytest.mark.asyncio
    async def test_bad_fields_are_skipped(self):
        store = InMemoryStore({"orders": {"shoes": 7, "junk": "seven", "neg": -2, "_Z": 7}})

        dist = await fill(store, "orders", default_rate=0.5)

        assert dist.data == {"shoes": 7}
        assert dist.total == 7

    @pytest.mark.parametrize("raw", ["fast", "0", "1.5", "-0.2", "nan"])
    @pytest.mark.asyncio
    async def test_bad_rate_keeps_default(self, raw):
        store = InMemoryStore({"orders": {"shoes": 1, "_R": raw}})

        dist = await fill(store, "orders", default_rate=0.5)

        assert dist.rate == 0.5

    @pytest.mark.asyncio
    async def test_bad_timestamp_treated_as_never(self):
        store = InMemoryStore({"orders": {"shoes": 1, "_T": "yesterday"}})

        dist = await fill(store, "orders", default_rate=0.5)

        assert dist.last_update is None

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self):
        store = AsyncMock()
        store.get_all.side_effect = StoreUnavailableError("connection reset")

        with pytest.raises(StoreUnavailableError):
            await fill(store, "orders", default_rate=0.5)


class TestPersist:
    @pytest.mark.asyncio
    async def test_writes_data_and_metadata(self):
        store = InMemoryStore({"orders": {"shoes": 8, "hats": 4, "_Z": 12, "_T": T, "_R": "0.5"}})
        dist = await fill(store, "orders", default_rate=0.5)
        dist.decay(T + 1)

        await persist(store, dist)

        assert store.snapshot("orders") == {
            "shoes": "4",
            "hats": "2",
            "_Z": "6",
            "_T": str(T + 1),
            "_R": "0.5",
        }

    @pytest.mark.asyncio
    async def test_never_writes_rate(self):
        store = InMemoryStore({"orders": {"shoes": 8, "_Z": 8, "_T": T, "_R": "0.9"}})
        dist = await fill(store, "orders", default_rate=0.5)
        dist.rate = 0.1
        dist.decay(T + 1)

        await persist(store, dist)

        assert store.snapshot("orders")["_R"] == "0.9"

    @pytest.mark.asyncio
    async def test_twice_is_idempotent(self):
        store = InMemoryStore({"orders": {"shoes": 8, "hats": 1, "_Z": 5, "_T": T}})

        await persist(store, await fill(store, "orders", default_rate=0.5))
        first = store.snapshot("orders")
        await persist(store, await fill(store, "orders", default_rate=0.5))

        assert store.snapshot("orders") == first
        assert first["_Z"] == "9"

    @pytest.mark.asyncio
    async def test_same_object_twice_is_idempotent(self):
        store = InMemoryStore({"orders": {"shoes": 8, "_Z": 8, "_T": T}})
        dist = await fill(store, "orders", default_rate=0.5)

        await persist(store, dist)
        await persist(store, dist)

        assert store.snapshot("orders") == {"shoes": "8", "_Z": "8", "_T": str(T)}

    @pytest.mark.asyncio
    async def test_conflict_when_record_moved_on(self):
        store = InMemoryStore({"orders": {"shoes": 8, "_Z": 8, "_T": T}})
        dist = await fill(store, "orders", default_rate=0.5)
        dist.decay(T + 1)

        await store.increment("orders", "shoes", 1, now=T)

        with pytest.raises(ConcurrentUpdateError):
            await persist(store, dist)
        assert store.snapshot("orders")["shoes"] == "9"

    @pytest.mark.asyncio
    async def test_new_distribution_is_created(self):
        store = InMemoryStore()
        dist = await fill(store, "fresh", default_rate=0.5)
        dist.decay(T)

        await persist(store, dist)

        assert store.snapshot("fresh") == {"_Z": "0", "_T": str(T)}


class TestParsers:
    def test_parse_count(self):
        assert parse_count("12", distribution="d", field="f") == 12
        assert parse_count(None, distribution="d", field="f") == 0

    def test_parse_count_rejects_garbage(self):
        with pytest.raises(FieldParseError) as exc_info:
            parse_count("1.5", distribution="d", field="f")
        assert exc_info.value.context.field == "f"
        assert exc_info.value.raw == "1.5"

    def test_parse_rate(self):
        assert parse_rate("0.25", distribution="d") == 0.25
        assert parse_rate(None, distribution="d") is None

    def test_parse_rate_rejects_out_of_range(self):
        with pytest.raises(FieldParseError):
            parse_rate("2", distribution="d")
