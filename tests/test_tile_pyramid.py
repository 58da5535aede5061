from __future__ import annotations

import pytest

from terrain_mesh.errors import InvalidGeometryConfiguration
from terrain_mesh.tile_pyramid import (
    BorderDirection,
    GeoRect,
    TileGrid,
    TileID,
    iter_tile_pyramid,
    num_tiles_x,
    num_tiles_y,
    tile_bounds_deg,
    tile_range_for_rectangle,
    tiles_for_rectangle,
)


def test_num_tiles_xy() -> None:
    assert num_tiles_x(0) == 2
    assert num_tiles_y(0) == 1
    assert num_tiles_x(1) == 4
    assert num_tiles_y(1) == 2

    with pytest.raises(ValueError):
        num_tiles_x(-1)
    with pytest.raises(ValueError):
        num_tiles_y(-1)


def test_tile_bounds_deg_examples() -> None:
    assert tile_bounds_deg(TileID(z=0, x=0, y=0)) == GeoRect(
        west=-180.0, south=-90.0, east=0.0, north=90.0
    )
    assert tile_bounds_deg(TileID(z=0, x=1, y=0)) == GeoRect(
        west=0.0, south=-90.0, east=180.0, north=90.0
    )
    assert tile_bounds_deg(TileID(z=1, x=3, y=1)) == GeoRect(
        west=90.0, south=0.0, east=180.0, north=90.0
    )


def test_adjacent_tiles_share_exact_edges() -> None:
    for x in range(0, 255):
        left = tile_bounds_deg(TileID(z=7, x=x, y=64))
        right = tile_bounds_deg(TileID(z=7, x=x + 1, y=64))
        assert left.east == right.west
    for y in range(0, 127):
        lower = tile_bounds_deg(TileID(z=7, x=10, y=y))
        upper = tile_bounds_deg(TileID(z=7, x=10, y=y + 1))
        assert lower.north == upper.south


def test_tile_range_for_rectangle_exclusive_end() -> None:
    rect = GeoRect(west=0.0, south=0.0, east=90.0, north=90.0)
    assert tile_range_for_rectangle(rect, 1) == (2, 2, 1, 1)


def test_iter_tile_pyramid_counts() -> None:
    rect = GeoRect(west=116.0, south=39.0, east=117.0, north=40.0)
    tiles = list(iter_tile_pyramid(rect, min_zoom=0, max_zoom=2))
    assert tiles[0] == TileID(z=0, x=1, y=0)
    assert TileID(z=1, x=3, y=1) in tiles
    assert TileID(z=2, x=6, y=2) in tiles


def test_tiles_for_rectangle_is_row_major() -> None:
    rect = GeoRect(west=0.0, south=0.0, east=90.0, north=90.0)
    tiles = list(tiles_for_rectangle(rect, 2))
    assert tiles == [
        TileID(z=2, x=4, y=2),
        TileID(z=2, x=5, y=2),
        TileID(z=2, x=4, y=3),
        TileID(z=2, x=5, y=3),
    ]


def test_tile_pyramid_validation_errors() -> None:
    with pytest.raises(ValueError, match="west out of range"):
        GeoRect(west=-181.0, south=0.0, east=0.0, north=1.0)
    with pytest.raises(ValueError, match="Expected west < east"):
        GeoRect(west=1.0, south=0.0, east=1.0, north=1.0)
    with pytest.raises(ValueError, match="Invalid zoom"):
        TileID(z=-1, x=0, y=0)
    with pytest.raises(ValueError, match="x out of range"):
        TileID(z=0, x=2, y=0)
    with pytest.raises(ValueError, match="y out of range"):
        TileID(z=0, x=0, y=1)
    with pytest.raises(ValueError, match="Zoom levels must be"):
        list(
            iter_tile_pyramid(
                GeoRect(west=0, south=0, east=1, north=1), min_zoom=-1, max_zoom=0
            )
        )
    with pytest.raises(ValueError, match="Expected min_zoom"):
        list(
            iter_tile_pyramid(
                GeoRect(west=0, south=0, east=1, north=1), min_zoom=2, max_zoom=1
            )
        )


def test_geo_rect_overlaps_is_strict() -> None:
    rect = GeoRect(west=0.0, south=0.0, east=10.0, north=10.0)
    assert rect.overlaps(GeoRect(west=5.0, south=5.0, east=15.0, north=15.0))
    assert rect.overlaps(GeoRect(west=2.0, south=2.0, east=3.0, north=3.0))
    # Touching edges or corners is not an overlap.
    assert not rect.overlaps(GeoRect(west=10.0, south=0.0, east=20.0, north=10.0))
    assert not rect.overlaps(GeoRect(west=10.0, south=10.0, east=20.0, north=20.0))
    assert not rect.overlaps(GeoRect(west=-20.0, south=-20.0, east=-10.0, north=-10.0))


def test_geo_rect_quadrants() -> None:
    rect = GeoRect(west=0.0, south=0.0, east=10.0, north=20.0)
    assert rect.sw() == GeoRect(west=0.0, south=0.0, east=5.0, north=10.0)
    assert rect.nw() == GeoRect(west=0.0, south=10.0, east=5.0, north=20.0)
    assert rect.ne() == GeoRect(west=5.0, south=10.0, east=10.0, north=20.0)
    assert rect.se() == GeoRect(west=5.0, south=0.0, east=10.0, north=10.0)
    assert rect.width == 10.0
    assert rect.height == 20.0


def test_tile_grid_resolution_and_level_zero_tiles() -> None:
    grid = TileGrid(65)
    assert grid.tile_size == 65
    assert grid.resolution(0) == pytest.approx(180.0 / 65)
    assert grid.resolution(3) == pytest.approx(180.0 / 65 / 8)
    assert grid.tiles_at_level_zero() == 2
    assert TileGrid(3).tiles_at_level_zero() == 2
    assert grid.extent() == GeoRect(west=-180.0, south=-90.0, east=180.0, north=90.0)

    with pytest.raises(InvalidGeometryConfiguration):
        TileGrid(1)


def test_tile_grid_neighbors() -> None:
    grid = TileGrid(17)
    tile = TileID(z=3, x=5, y=2)
    assert grid.neighbor(tile, BorderDirection.NORTH) == TileID(z=3, x=5, y=3)
    assert grid.neighbor(tile, BorderDirection.EAST) == TileID(z=3, x=6, y=2)
    assert grid.neighbor(tile, BorderDirection.SOUTH) == TileID(z=3, x=5, y=1)
    assert grid.neighbor(tile, BorderDirection.WEST) == TileID(z=3, x=4, y=2)

    corner = TileID(z=1, x=0, y=0)
    assert grid.neighbor(corner, BorderDirection.WEST) is None
    assert grid.neighbor(corner, BorderDirection.SOUTH) is None
    assert grid.neighbor(TileID(z=1, x=3, y=1), BorderDirection.EAST) is None
    assert grid.neighbor(TileID(z=1, x=3, y=1), BorderDirection.NORTH) is None


def test_border_direction_opposite() -> None:
    assert BorderDirection.NORTH.opposite is BorderDirection.SOUTH
    assert BorderDirection.EAST.opposite is BorderDirection.WEST
    assert BorderDirection.SOUTH.opposite is BorderDirection.NORTH
    assert BorderDirection.WEST.opposite is BorderDirection.EAST
    assert [int(d) for d in BorderDirection] == [0, 1, 2, 3]
