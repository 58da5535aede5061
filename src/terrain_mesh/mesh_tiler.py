from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from .border_resolver import BorderConsistencyResolver
from .child_flags import ChildFlags, child_flags
from .config import MeshTilerConfig
from .dem_source import DemHeightReader, HeightReader, HeightSource, check_tile_heights
from .errors import MeshTilerError, RasterReadError
from .geometric_error import ErrorBudget
from .heightfield import Heightfield
from .heights_cache import HeightsCache
from .mesh_assembler import Mesh, MeshAssembler
from .tile_pyramid import GeoRect, TileGrid, TileID

logger = logging.getLogger(__name__)


@dataclass
class MeshTile:
    """A simplified terrain mesh for one tile, plus its child availability."""

    tile: TileID
    mesh: Mesh = field(default_factory=Mesh)
    children: ChildFlags = field(default_factory=ChildFlags)

    @property
    def vertex_count(self) -> int:
        return len(self.mesh.vertices)

    @property
    def triangle_count(self) -> int:
        return self.mesh.triangle_count


class MeshTiler:
    """Builds MeshTiles from a height dataset.

    One tiler (and its heights cache) can be shared by several worker
    threads; everything else used while building a tile is tile-local.
    """

    def __init__(
        self,
        dataset_bounds: GeoRect,
        *,
        config: Optional[MeshTilerConfig] = None,
        grid: Optional[TileGrid] = None,
        cache: Optional[HeightsCache] = None,
        reader: Optional[HeightReader] = None,
    ) -> None:
        self._config = config or MeshTilerConfig()
        self._grid = grid or TileGrid(self._config.tile_size)
        if self._grid.tile_size != self._config.tile_size:
            raise ValueError(
                f"grid tile_size {self._grid.tile_size} does not match "
                f"config tile_size {self._config.tile_size}"
            )
        self._cache = (
            cache if cache is not None else HeightsCache(self._config.heights_cache_entries)
        )
        self._reader = reader or DemHeightReader(
            self._grid, fill_value=self._config.fill_value
        )
        self._dataset_bounds = dataset_bounds
        self._error_budget = ErrorBudget.from_config(self._config, self._grid)
        self._resolver = BorderConsistencyResolver(
            grid=self._grid,
            cache=self._cache,
            reader=self._reader,
            dataset_bounds=dataset_bounds,
        )

    @classmethod
    def for_dataset(cls, dataset: HeightSource, **kwargs: Any) -> "MeshTiler":
        return cls(dataset.bounds, **kwargs)

    @property
    def config(self) -> MeshTilerConfig:
        return self._config

    @property
    def grid(self) -> TileGrid:
        return self._grid

    @property
    def cache(self) -> HeightsCache:
        return self._cache

    @property
    def error_budget(self) -> ErrorBudget:
        return self._error_budget

    @property
    def max_zoom(self) -> int:
        return self._config.max_zoom

    def bounds(self) -> GeoRect:
        return self._dataset_bounds

    def create_mesh(
        self,
        dataset: HeightSource,
        tile: TileID,
        reader: Optional[HeightReader] = None,
    ) -> MeshTile:
        reader = reader or self._reader
        size = self._grid.tile_size
        logger.debug("mesh_tile_started", extra={"tile": str(tile), "zoom": tile.z})

        heights = self._cache.get(tile)
        cache_hit = heights is not None
        if heights is None:
            try:
                heights = reader.read_heights(dataset, tile, size, size)
                heights = check_tile_heights(heights, width=size, height=size, tile=tile)
            except RasterReadError as exc:
                logger.error(
                    "mesh_tile_failed",
                    extra={"tile": str(tile), "stage": "read", "error": str(exc)},
                )
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("mesh_tile_failed", extra={"tile": str(tile), "stage": "read"})
                raise RasterReadError(
                    f"Failed to read heights for tile {tile}: {exc}", tile=tile
                ) from exc

        try:
            mesh_tile = self._build(dataset, tile, heights, reader)
        except MeshTilerError as exc:
            logger.error(
                "mesh_tile_failed",
                extra={"tile": str(tile), "stage": "build", "error": str(exc)},
            )
            raise

        if not cache_hit:
            self._cache.push(tile, heights)

        logger.info(
            "mesh_tile_built",
            extra={
                "tile": str(tile),
                "zoom": tile.z,
                "vertices": mesh_tile.vertex_count,
                "triangles": mesh_tile.triangle_count,
                "cache_hit": cache_hit,
            },
        )
        return mesh_tile

    def _build(
        self,
        dataset: HeightSource,
        tile: TileID,
        heights: np.ndarray,
        reader: HeightReader,
    ) -> MeshTile:
        size = self._grid.tile_size
        error = self._error_budget.for_zoom(tile.z)
        threshold = self._config.border_propagation_min_zoom

        heightfield = Heightfield(heights, size)
        heightfield.apply_error_threshold(error, force_all_mandatory=tile.z <= threshold)

        # Neighbors only exist to reconcile against above the threshold.
        if tile.z > threshold:
            self._resolver.resolve(heightfield, tile, error, dataset, reader=reader)

        tile_bounds = self._grid.tile_bounds(tile)
        assembler = MeshAssembler(tile_bounds, size, heightfield)
        heightfield.generate_mesh(assembler.emit_vertex)
        heightfield.clear()

        children = ChildFlags()
        # Child flags are only omitted at the configured deepest zoom.
        if tile.z != self.max_zoom:
            children = child_flags(tile_bounds, self._dataset_bounds)

        return MeshTile(tile=tile, mesh=assembler.mesh, children=children)
