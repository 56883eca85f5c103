"""Unit tests for the in-memory counter store."""

import asyncio
import threading
from unittest.mock import Mock

import pytest

from quota_gate.adapters.rate_limit.in_memory import InMemoryQuotaStore


@pytest.mark.asyncio
async def test_first_increment_creates_counter_with_ttl(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)

    snapshot = await store.incr("limit:k", 60)

    assert snapshot.count == 1
    assert snapshot.ttl_remaining == 60


@pytest.mark.asyncio
async def test_later_increments_keep_original_expiry(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)
    await store.incr("limit:k", 60)

    clock.return_value = 1_020.0
    snapshot = await store.incr("limit:k", 60)

    assert snapshot.count == 2
    assert snapshot.ttl_remaining == 40


@pytest.mark.asyncio
async def test_expired_counter_is_recreated(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)
    await store.incr("limit:k", 10)
    await store.incr("limit:k", 10)

    clock.return_value = 1_010.0
    snapshot = await store.incr("limit:k", 10)

    assert snapshot.count == 1
    assert snapshot.ttl_remaining == 10


@pytest.mark.asyncio
async def test_isolated_by_key(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)

    await store.incr("limit:a", 60)
    await store.incr("limit:a", 60)

    assert (await store.incr("limit:b", 60)).count == 1


@pytest.mark.asyncio
async def test_invalid_incr_args() -> None:
    store = InMemoryQuotaStore()

    with pytest.raises(ValueError):
        await store.incr("", 60)

    with pytest.raises(ValueError):
        await store.incr("limit:k", 0)


@pytest.mark.asyncio
async def test_purge_expired_drops_only_stale_counters(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)
    await store.incr("limit:short", 5)
    await store.incr("limit:long", 500)

    clock.return_value = 1_006.0

    assert store.purge_expired() == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_incr_sweeps_counters_of_expired_windows(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock)
    for i in range(1_000):
        await store.incr(f"limit:client-{i}", 1)
    assert len(store) == 1_000

    clock.return_value = 5_000.0
    snapshot = await store.incr("limit:late", 1)

    assert snapshot.count == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_sweep_waits_for_interval_and_keeps_live_counters(clock: Mock) -> None:
    store = InMemoryQuotaStore(clock=clock, sweep_interval_seconds=30)
    await store.incr("limit:short", 5)
    await store.incr("limit:long", 500)

    clock.return_value = 1_010.0
    await store.incr("limit:other", 500)
    assert len(store) == 3

    clock.return_value = 1_030.0
    await store.incr("limit:other", 500)
    assert len(store) == 2
    assert (await store.incr("limit:long", 500)).count == 2


def test_invalid_sweep_interval() -> None:
    with pytest.raises(ValueError):
        InMemoryQuotaStore(sweep_interval_seconds=0)

def test_concurrent_threads_get_distinct_counts() -> None:
    store = InMemoryQuotaStore()
    counts: list[int] = []
    counts_lock = threading.Lock()

    def _worker() -> None:
        snapshot = asyncio.run(store.incr("limit:shared", 60))
        with counts_lock:
            counts.append(snapshot.count)

    threads = [threading.Thread(target=_worker) for _ in range(40)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(counts) == list(range(1, 41))
