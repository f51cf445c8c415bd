"""Unit tests for the in-memory counter store."""

from unittest.mock import Mock

import pytest

from throttle.adapters.rate_limit.in_memory import InMemoryCounterStore


@pytest.mark.asyncio
async def test_counts_up_to_limit_in_same_window() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    assert (await store.execute("k", 3, 60_000)).count == 1
    assert (await store.execute("k", 3, 60_000)).count == 2
    snapshot = await store.execute("k", 3, 60_000)
    assert snapshot.count == 3
    assert snapshot.ttl_ms == 60_000


@pytest.mark.asyncio
async def test_full_window_is_not_incremented() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.execute("k", 2, 60_000)
    await store.execute("k", 2, 60_000)

    blocked = await store.execute("k", 2, 60_000)
    again = await store.execute("k", 2, 60_000)
    assert blocked.count == 3
    assert again.count == 3


@pytest.mark.asyncio
async def test_ttl_counts_down_without_reset() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.execute("k", 5, 10_000)
    clock.return_value = 1004.0
    snapshot = await store.execute("k", 5, 10_000)

    assert snapshot.count == 2
    assert snapshot.ttl_ms == 6_000


@pytest.mark.asyncio
async def test_starts_fresh_window_after_expiry() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    assert (await store.execute("k", 1, 10_000)).count == 1
    assert (await store.execute("k", 1, 10_000)).count == 2

    clock.return_value = 1010.0
    snapshot = await store.execute("k", 1, 10_000)
    assert snapshot.count == 1
    assert snapshot.ttl_ms == 10_000


@pytest.mark.asyncio
async def test_isolated_by_key() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock)

    await store.execute("k1", 1, 60_000)
    assert (await store.execute("k1", 1, 60_000)).count == 2

    assert (await store.execute("k2", 1, 60_000)).count == 1


@pytest.mark.asyncio
async def test_expired_windows_are_swept() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock, sweep_interval=1.0)

    await store.execute("a", 1, 1_000)
    await store.execute("b", 1, 1_000)
    assert len(store) == 2

    clock.return_value = 1002.0
    await store.execute("c", 1, 1_000)
    assert len(store) == 1


@pytest.mark.asyncio
async def test_other_keys_are_only_swept_once_the_interval_elapses() -> None:
    clock = Mock(return_value=1000.0)
    store = InMemoryCounterStore(clock=clock, sweep_interval=30.0)

    await store.execute("a", 1, 1_000)
    await store.execute("b", 1, 1_000)

    clock.return_value = 1005.0
    snapshot = await store.execute("a", 1, 1_000)
    # "a" restarts its own window; stale "b" waits for the next full sweep
    assert snapshot.count == 1
    assert len(store) == 2

    clock.return_value = 1031.0
    await store.execute("c", 1, 1_000)
    assert len(store) == 1


def test_sweep_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InMemoryCounterStore(sweep_interval=0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "args",
    [
        ("", 1, 1000),
        ("k", 0, 1000),
        ("k", 1, 0),
    ],
)
async def test_invalid_execute_args(args: tuple) -> None:
    store = InMemoryCounterStore()

    with pytest.raises(ValueError):
        await store.execute(*args)
