from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, Optional

from .errors import InvalidGeometryConfiguration


@dataclass(frozen=True)
class GeoRect:
    """A geographic rectangle in degrees in EPSG:4326."""

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if not (-180.0 <= float(self.west) <= 180.0):
            raise ValueError(f"west out of range: {self.west}")
        if not (-180.0 <= float(self.east) <= 180.0):
            raise ValueError(f"east out of range: {self.east}")
        if not (-90.0 <= float(self.south) <= 90.0):
            raise ValueError(f"south out of range: {self.south}")
        if not (-90.0 <= float(self.north) <= 90.0):
            raise ValueError(f"north out of range: {self.north}")
        if not (self.west < self.east):
            raise ValueError(f"Expected west < east, got {self.west} >= {self.east}")
        if not (self.south < self.north):
            raise ValueError(
                f"Expected south < north, got {self.south} >= {self.north}"
            )

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    def overlaps(self, other: "GeoRect") -> bool:
        """True when the interiors intersect; rectangles sharing an edge do not overlap."""

        return (
            self.west < other.east
            and other.west < self.east
            and self.south < other.north
            and other.south < self.north
        )

    def _center(self) -> tuple[float, float]:
        return (self.west + self.east) / 2.0, (self.south + self.north) / 2.0

    def sw(self) -> "GeoRect":
        cx, cy = self._center()
        return GeoRect(west=self.west, south=self.south, east=cx, north=cy)

    def nw(self) -> "GeoRect":
        cx, cy = self._center()
        return GeoRect(west=self.west, south=cy, east=cx, north=self.north)

    def ne(self) -> "GeoRect":
        cx, cy = self._center()
        return GeoRect(west=cx, south=cy, east=self.east, north=self.north)

    def se(self) -> "GeoRect":
        cx, cy = self._center()
        return GeoRect(west=cx, south=self.south, east=self.east, north=cy)


WORLD_RECT = GeoRect(west=-180.0, south=-90.0, east=180.0, north=90.0)


@dataclass(frozen=True)
class TileID:
    """Quadtree tile coordinates (EPSG:4326, TMS scheme, y origin at south)."""

    z: int
    x: int
    y: int

    def __post_init__(self) -> None:
        if self.z < 0:
            raise ValueError(f"Invalid zoom: {self.z}")
        max_x = num_tiles_x(self.z) - 1
        max_y = num_tiles_y(self.z) - 1
        if not (0 <= self.x <= max_x):
            raise ValueError(f"x out of range at z={self.z}: {self.x}")
        if not (0 <= self.y <= max_y):
            raise ValueError(f"y out of range at z={self.z}: {self.y}")

    def __str__(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"


class BorderDirection(IntEnum):
    """Tile borders, in the order the border resolver visits them."""

    NORTH = 0
    EAST = 1
    SOUTH = 2
    WEST = 3

    @property
    def opposite(self) -> "BorderDirection":
        return BorderDirection((self.value + 2) % 4)


# (dx, dy) in TMS tile space; north is +y.
_NEIGHBOR_OFFSETS: dict[BorderDirection, tuple[int, int]] = {
    BorderDirection.NORTH: (0, 1),
    BorderDirection.EAST: (1, 0),
    BorderDirection.SOUTH: (0, -1),
    BorderDirection.WEST: (-1, 0),
}


def num_tiles_x(z: int) -> int:
    """Number of tiles in X at zoom z for the EPSG:4326 pyramid."""

    if z < 0:
        raise ValueError(f"Invalid zoom: {z}")
    # EPSG:4326 uses 2 tiles at level 0 in X.
    return 1 << (z + 1)


def num_tiles_y(z: int) -> int:
    """Number of tiles in Y at zoom z for the EPSG:4326 pyramid."""

    if z < 0:
        raise ValueError(f"Invalid zoom: {z}")
    return 1 << z


def tile_bounds_deg(tile: TileID) -> GeoRect:
    """Return the bounds in degrees for a TileID.

    Both edges are computed from the tile index so that adjacent tiles share
    bit-identical edge coordinates.
    """

    tile_width = 360.0 / num_tiles_x(tile.z)
    tile_height = 180.0 / num_tiles_y(tile.z)

    west = -180.0 + tile.x * tile_width
    east = -180.0 + (tile.x + 1) * tile_width
    south = -90.0 + tile.y * tile_height
    north = -90.0 + (tile.y + 1) * tile_height
    return GeoRect(west=west, south=south, east=east, north=north)


def _clamp_int(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, int(value)))


def tile_range_for_rectangle(rect: GeoRect, z: int) -> tuple[int, int, int, int]:
    """Return (x_min, x_max, y_min, y_max) tile range covering rect at zoom z.

    Rectangle bounds are treated as [west, east) and [south, north) to avoid
    double-counting when the rectangle aligns with tile boundaries.
    """

    if z < 0:
        raise ValueError(f"Invalid zoom: {z}")

    nx = num_tiles_x(z)
    ny = num_tiles_y(z)

    x_min = math.floor(((float(rect.west) + 180.0) / 360.0) * nx)
    # Treat east/north as exclusive bounds in a numerically robust way.
    x_max = math.ceil(((float(rect.east) + 180.0) / 360.0) * nx) - 1
    y_min = math.floor(((float(rect.south) + 90.0) / 180.0) * ny)
    y_max = math.ceil(((float(rect.north) + 90.0) / 180.0) * ny) - 1

    x_min = _clamp_int(x_min, 0, nx - 1)
    x_max = _clamp_int(x_max, 0, nx - 1)
    y_min = _clamp_int(y_min, 0, ny - 1)
    y_max = _clamp_int(y_max, 0, ny - 1)

    if x_min > x_max or y_min > y_max:
        raise ValueError(f"Rectangle does not intersect tiling scheme at z={z}: {rect}")

    return x_min, x_max, y_min, y_max


def tiles_for_rectangle(rect: GeoRect, z: int) -> Iterator[TileID]:
    """Iterate tiles covering rect at zoom z, row by row (x varies fastest)."""

    x_min, x_max, y_min, y_max = tile_range_for_rectangle(rect, z)
    for y in range(y_min, y_max + 1):
        for x in range(x_min, x_max + 1):
            yield TileID(z=z, x=x, y=y)


def iter_tile_pyramid(
    rect: GeoRect, *, min_zoom: int, max_zoom: int
) -> Iterator[TileID]:
    """Iterate all tiles in a zoom range that intersect a rectangle."""

    if min_zoom < 0 or max_zoom < 0:
        raise ValueError("Zoom levels must be >= 0")
    if min_zoom > max_zoom:
        raise ValueError(f"Expected min_zoom <= max_zoom, got {min_zoom} > {max_zoom}")

    for z in range(min_zoom, max_zoom + 1):
        yield from tiles_for_rectangle(rect, z)


class TileGrid:
    """Global geodetic tiling scheme used by the mesh tiler.

    Each tile is sampled on a ``tile_size`` x ``tile_size`` grid whose outer
    rows and columns lie exactly on the tile edges.
    """

    def __init__(self, tile_size: int = 65) -> None:
        if tile_size < 2:
            raise InvalidGeometryConfiguration(
                f"tile_size must be >= 2, got {tile_size}"
            )
        self._tile_size = int(tile_size)

    @property
    def tile_size(self) -> int:
        return self._tile_size

    def extent(self) -> GeoRect:
        return WORLD_RECT

    def resolution(self, z: int) -> float:
        """Degrees per pixel at zoom z."""

        if z < 0:
            raise ValueError(f"Invalid zoom: {z}")
        return (180.0 / self._tile_size) / float(1 << z)

    def tiles_at_level_zero(self) -> int:
        return int(round(self.extent().width / (self._tile_size * self.resolution(0))))

    def tile_bounds(self, tile: TileID) -> GeoRect:
        return tile_bounds_deg(tile)

    def neighbor(self, tile: TileID, direction: BorderDirection) -> Optional[TileID]:
        """The adjacent tile across ``direction``, or None outside the pyramid."""

        dx, dy = _NEIGHBOR_OFFSETS[BorderDirection(direction)]
        x = tile.x + dx
        y = tile.y + dy
        if not (0 <= x < num_tiles_x(tile.z) and 0 <= y < num_tiles_y(tile.z)):
            return None
        return TileID(z=tile.z, x=x, y=y)
