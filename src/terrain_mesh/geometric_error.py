from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .errors import InvalidGeometryConfiguration

if TYPE_CHECKING:
    from .config import MeshTilerConfig
    from .tile_pyramid import TileGrid


WGS84_A: Final[float] = 6378137.0

# Default quality of terrain created from heightmaps (Cesium TerrainProvider).
DEFAULT_HEIGHTMAP_TERRAIN_QUALITY: Final[float] = 0.25


def estimate_level_zero_error(
    major_axis_radius: float,
    terrain_quality: float,
    tile_width: int,
    tiles_at_level_zero: int,
) -> float:
    """Geometric error estimate for a level-zero tile built from a heightmap."""

    if tile_width <= 0:
        raise InvalidGeometryConfiguration(f"tile_width must be > 0, got {tile_width}")
    if tiles_at_level_zero <= 0:
        raise InvalidGeometryConfiguration(
            f"tiles_at_level_zero must be > 0, got {tiles_at_level_zero}"
        )
    if major_axis_radius <= 0:
        raise InvalidGeometryConfiguration(
            f"major_axis_radius must be > 0, got {major_axis_radius}"
        )
    if terrain_quality <= 0:
        raise InvalidGeometryConfiguration(
            f"terrain_quality must be > 0, got {terrain_quality}"
        )

    error = float(major_axis_radius) * 2.0 * math.pi * float(terrain_quality)
    return error / float(int(tile_width) * int(tiles_at_level_zero))


def error_for_zoom(level_zero_error: float, zoom: int) -> float:
    """Halve the level-zero error once per zoom level."""

    if zoom < 0:
        raise ValueError(f"Invalid zoom: {zoom}")
    return float(level_zero_error) / float(1 << int(zoom))


@dataclass(frozen=True)
class ErrorBudget:
    level_zero_error: float

    def for_zoom(self, zoom: int) -> float:
        return error_for_zoom(self.level_zero_error, zoom)

    @classmethod
    def from_config(cls, config: "MeshTilerConfig", grid: "TileGrid") -> "ErrorBudget":
        quality = config.heightmap_terrain_quality * config.mesh_quality_factor
        return cls(
            level_zero_error=estimate_level_zero_error(
                config.semi_major_axis_m,
                quality,
                grid.tile_size,
                grid.tiles_at_level_zero(),
            )
        )
