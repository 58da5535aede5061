"""Bounded LRU cache of decoded tile heights.

The cache is shared by every tile build of a tiler (possibly across worker
threads), so all access is serialized under one lock.

Ownership rules:
  - ``push`` moves a buffer into the cache; the array is frozen
    (``writeable=False``) and the caller must not use it afterwards.
  - ``get`` hands out a read-only view that is borrowed for the duration of
    one tile build.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Any, Optional

import numpy as np

from .tile_pyramid import TileID

logger = logging.getLogger(__name__)


class HeightsCache:
    def __init__(self, max_entries: int = 32) -> None:
        self._max_entries = int(max_entries)
        self._lock = threading.Lock()
        self._entries: OrderedDict[TileID, np.ndarray] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, tile: object) -> bool:
        with self._lock:
            return tile in self._entries

    def get(self, tile: TileID) -> Optional[np.ndarray]:
        with self._lock:
            heights = self._entries.get(tile)
            if heights is None:
                self.misses += 1
                return None
            self._entries.move_to_end(tile)
            self.hits += 1
            view = heights.view()
            view.flags.writeable = False
            return view

    def push(self, tile: TileID, heights: np.ndarray) -> None:
        if self._max_entries <= 0:
            return
        heights.flags.writeable = False
        with self._lock:
            self._entries.pop(tile, None)
            self._entries[tile] = heights
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.evictions += 1
                logger.debug("heights_cache_evicted", extra={"tile": str(evicted)})

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "max_entries": self._max_entries,
                "size": len(self._entries),
                "hits": self.hits,
                "misses": self.misses,
                "evictions": self.evictions,
            }
