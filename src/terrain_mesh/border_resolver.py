from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .dem_source import HeightReader, HeightSource, check_tile_heights
from .errors import RasterReadError
from .heightfield import Heightfield
from .heights_cache import HeightsCache
from .tile_pyramid import BorderDirection, GeoRect, TileGrid, TileID

logger = logging.getLogger(__name__)


def is_cached_border(direction: BorderDirection) -> bool:
    """East/west neighbors sit in the same traversal row and are worth caching.

    North/south neighbors are read fresh and dropped, which keeps the cache to
    one row of tiles.
    """

    return int(direction) % 2 != 0


class BorderConsistencyResolver:
    """Aligns a tile's edge activation with its four neighbors' simplification."""

    def __init__(
        self,
        *,
        grid: TileGrid,
        cache: HeightsCache,
        reader: HeightReader,
        dataset_bounds: GeoRect,
    ) -> None:
        self._grid = grid
        self._cache = cache
        self._reader = reader
        self._dataset_bounds = dataset_bounds

    def resolve(
        self,
        heightfield: Heightfield,
        tile: TileID,
        error: float,
        dataset: HeightSource,
        *,
        reader: Optional[HeightReader] = None,
    ) -> list[BorderDirection]:
        applied: list[BorderDirection] = []
        for direction in BorderDirection:
            neighbor = self._grid.neighbor(tile, direction)
            if neighbor is None:
                continue
            if not self._dataset_bounds.overlaps(self._grid.tile_bounds(neighbor)):
                continue

            heights, owned = self._neighbor_heights(
                tile, neighbor, direction, dataset, reader or self._reader
            )
            neighbor_field = Heightfield(heights, self._grid.tile_size)
            neighbor_field.apply_error_threshold(error)
            added = heightfield.propagate_border_activation(neighbor_field, direction)
            neighbor_field.clear()

            if owned and is_cached_border(direction):
                # Ownership moves to the cache; the buffer is not touched again.
                self._cache.push(neighbor, heights)
            applied.append(direction)

            logger.debug(
                "mesh_border_resolved",
                extra={
                    "tile": str(tile),
                    "neighbor": str(neighbor),
                    "direction": direction.name,
                    "activated": added,
                },
            )
        if applied:
            # Corner anchors keep every reconciled edge identical on both sides.
            heightfield.anchor_corners()
        return applied

    def _neighbor_heights(
        self,
        tile: TileID,
        neighbor: TileID,
        direction: BorderDirection,
        dataset: HeightSource,
        reader: HeightReader,
    ) -> tuple[np.ndarray, bool]:
        """Return the neighbor heights and whether they were freshly read."""

        if is_cached_border(direction):
            heights = self._cache.get(neighbor)
            if heights is not None:
                return heights, False

        size = self._grid.tile_size
        try:
            heights = reader.read_heights(dataset, neighbor, size, size)
        except Exception as exc:  # noqa: BLE001
            raise RasterReadError(
                f"Failed to read {direction.name.lower()} neighbor {neighbor} of tile {tile}: {exc}",
                tile=tile,
                neighbor=neighbor,
                direction=direction,
            ) from exc
        heights = check_tile_heights(
            heights,
            width=size,
            height=size,
            tile=tile,
            neighbor=neighbor,
            direction=direction,
        )
        return heights, True
