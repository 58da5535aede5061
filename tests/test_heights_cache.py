from __future__ import annotations

import threading

import numpy as np
import pytest

from terrain_mesh.heights_cache import HeightsCache
from terrain_mesh.tile_pyramid import TileID


def _tile(x: int) -> TileID:
    return TileID(z=5, x=x, y=3)


def test_get_miss_then_hit() -> None:
    cache = HeightsCache(max_entries=4)
    assert cache.get(_tile(1)) is None

    heights = np.arange(9, dtype=np.float32).reshape(3, 3)
    cache.push(_tile(1), heights)

    got = cache.get(_tile(1))
    assert got is not None
    np.testing.assert_array_equal(got, np.arange(9, dtype=np.float32).reshape(3, 3))
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1
    assert _tile(1) in cache
    assert len(cache) == 1


def test_push_transfers_ownership_and_get_is_borrowed() -> None:
    cache = HeightsCache(max_entries=2)
    heights = np.zeros((3, 3), dtype=np.float32)
    cache.push(_tile(1), heights)

    # The pushed buffer is frozen; callers cannot mutate cached data.
    with pytest.raises(ValueError):
        heights[0, 0] = 1.0

    borrowed = cache.get(_tile(1))
    assert borrowed is not None
    assert not borrowed.flags.writeable
    with pytest.raises(ValueError):
        borrowed[1, 1] = 5.0


def test_lru_eviction_order() -> None:
    cache = HeightsCache(max_entries=2)
    cache.push(_tile(1), np.zeros((3, 3), dtype=np.float32))
    cache.push(_tile(2), np.zeros((3, 3), dtype=np.float32))

    # Touch tile 1 so tile 2 becomes least recently used.
    assert cache.get(_tile(1)) is not None
    cache.push(_tile(3), np.zeros((3, 3), dtype=np.float32))

    assert _tile(1) in cache
    assert _tile(2) not in cache
    assert _tile(3) in cache
    assert cache.stats()["evictions"] == 1
    assert cache.stats()["size"] == 2


def test_push_replaces_existing_entry() -> None:
    cache = HeightsCache(max_entries=2)
    cache.push(_tile(1), np.zeros((3, 3), dtype=np.float32))
    cache.push(_tile(1), np.ones((3, 3), dtype=np.float32))
    assert len(cache) == 1
    got = cache.get(_tile(1))
    assert got is not None
    assert float(got[0, 0]) == 1.0


def test_zero_capacity_disables_cache() -> None:
    cache = HeightsCache(max_entries=0)
    cache.push(_tile(1), np.zeros((3, 3), dtype=np.float32))
    assert cache.get(_tile(1)) is None
    assert len(cache) == 0


def test_clear() -> None:
    cache = HeightsCache(max_entries=3)
    cache.push(_tile(1), np.zeros((3, 3), dtype=np.float32))
    cache.clear()
    assert len(cache) == 0
    assert cache.get(_tile(1)) is None


def test_concurrent_access_stays_bounded() -> None:
    cache = HeightsCache(max_entries=8)

    def worker(offset: int) -> None:
        for i in range(200):
            tile = _tile((offset * 7 + i) % 32)
            if cache.get(tile) is None:
                cache.push(tile, np.full((3, 3), float(i), dtype=np.float32))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    stats = cache.stats()
    assert stats["size"] <= 8
    assert stats["hits"] + stats["misses"] == 6 * 200
