from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Literal, Optional, Protocol

import numpy as np

from .errors import RasterReadError
from .tile_pyramid import BorderDirection, GeoRect, TileGrid, TileID

SamplingMethod = Literal["nearest", "bilinear"]


class HeightSource(Protocol):
    """A raster dataset the tiler can sample heights from."""

    @property
    def bounds(self) -> GeoRect: ...

    def sample_grid(
        self, rect: GeoRect, *, width: int, height: int, fill_value: float = 0.0
    ) -> np.ndarray: ...


class HeightReader(Protocol):
    def read_heights(
        self, dataset: HeightSource, tile: TileID, width: int, height: int
    ) -> np.ndarray: ...


def _sample_axes(rect: GeoRect, width: int, height: int) -> tuple[np.ndarray, np.ndarray]:
    if width < 2 or height < 2:
        raise ValueError(f"sample grid must be at least 2x2, got {width}x{height}")
    lons = np.linspace(rect.west, rect.east, int(width), dtype=np.float64)
    # Row 0 is the north edge.
    lats = np.linspace(rect.north, rect.south, int(height), dtype=np.float64)
    return lons, lats


@dataclass(frozen=True)
class DemGrid:
    """A regularly-spaced DEM grid in EPSG:4326 degrees.

    Heights are stored as meters in a (ny, nx) array with:
    - axis 0: south -> north (increasing latitude)
    - axis 1: west -> east (increasing longitude)
    """

    west: float
    south: float
    east: float
    north: float
    heights_m: np.ndarray
    nodata: Optional[float] = None
    method: SamplingMethod = "bilinear"

    def __post_init__(self) -> None:
        if self.heights_m.ndim != 2:
            raise ValueError("heights_m must be a 2D array")
        if not (self.west < self.east and self.south < self.north):
            raise ValueError("Invalid bounds for DemGrid")
        if self.heights_m.shape[0] < 2 or self.heights_m.shape[1] < 2:
            raise ValueError("heights_m must be at least 2x2")
        if self.method not in ("nearest", "bilinear"):
            raise ValueError(f"Unknown sampling method: {self.method}")

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.heights_m.shape[0]), int(self.heights_m.shape[1])

    @property
    def bounds(self) -> GeoRect:
        return GeoRect(west=self.west, south=self.south, east=self.east, north=self.north)

    def contains(self, lon: float, lat: float) -> bool:
        return (self.west <= lon <= self.east) and (self.south <= lat <= self.north)

    def sample_points(
        self, lons: np.ndarray, lats: np.ndarray, *, fill_value: float = 0.0
    ) -> np.ndarray:
        """Sample broadcastable lon/lat arrays; points outside the grid get fill_value."""

        lons, lats = np.broadcast_arrays(
            np.asarray(lons, dtype=np.float64), np.asarray(lats, dtype=np.float64)
        )
        ny, nx = self.shape
        inside = (
            (lons >= self.west) & (lons <= self.east) & (lats >= self.south) & (lats <= self.north)
        )
        x = np.clip((lons - self.west) / (self.east - self.west) * (nx - 1), 0, nx - 1)
        y = np.clip((lats - self.south) / (self.north - self.south) * (ny - 1), 0, ny - 1)
        grid = self.heights_m.astype(np.float64, copy=False)

        if self.method == "nearest":
            values = grid[np.rint(y).astype(np.intp), np.rint(x).astype(np.intp)]
        else:
            x0 = np.floor(x).astype(np.intp)
            y0 = np.floor(y).astype(np.intp)
            x1 = np.minimum(x0 + 1, nx - 1)
            y1 = np.minimum(y0 + 1, ny - 1)
            dx = x - x0
            dy = y - y0
            v0 = grid[y0, x0] * (1.0 - dx) + grid[y0, x1] * dx
            v1 = grid[y1, x0] * (1.0 - dx) + grid[y1, x1] * dx
            values = v0 * (1.0 - dy) + v1 * dy

        ok = inside & np.isfinite(values)
        return np.where(ok, values, float(fill_value))

    def sample(self, lon: float, lat: float, *, fill_value: float = 0.0) -> float:
        out = self.sample_points(np.array([lon]), np.array([lat]), fill_value=fill_value)
        return float(out[0])

    def sample_grid(
        self, rect: GeoRect, *, width: int, height: int, fill_value: float = 0.0
    ) -> np.ndarray:
        lons, lats = _sample_axes(rect, width, height)
        values = self.sample_points(lons[np.newaxis, :], lats[:, np.newaxis], fill_value=fill_value)
        return values.astype(np.float32)

    @staticmethod
    def from_geotiff(path: Path, *, method: SamplingMethod = "bilinear") -> "DemGrid":
        """Load a GeoTIFF using rasterio (optional dependency)."""

        try:
            import rasterio  # type: ignore[import-not-found]
        except ModuleNotFoundError as exc:
            raise RuntimeError(
                "rasterio is required to load GeoTIFF DEMs. Install the 'geotiff' extra."
            ) from exc

        with rasterio.open(path) as ds:
            if ds.count < 1:
                raise ValueError(f"No raster bands found: {path}")
            if ds.crs is None or ds.crs.to_epsg() != 4326:
                raise ValueError(f"Expected EPSG:4326 DEM, got {ds.crs}: {path}")
            arr = ds.read(1).astype(np.float32)
            nodata = ds.nodata
            if nodata is not None:
                arr = np.where(arr == float(nodata), np.nan, arr)

            # rasterio arrays are north->south; flip to south->north.
            if ds.transform.e < 0:
                arr = np.flipud(arr)

            bounds = ds.bounds
            return DemGrid(
                west=float(bounds.left),
                south=float(bounds.bottom),
                east=float(bounds.right),
                north=float(bounds.top),
                heights_m=arr,
                nodata=float(nodata) if nodata is not None else None,
                method=method,
            )


@dataclass(frozen=True)
class DemMosaic:
    """A DEM mosaic that dispatches samples to underlying 1° tiles."""

    tiles: dict[tuple[int, int], DemGrid]

    def __post_init__(self) -> None:
        if not self.tiles:
            raise ValueError("DemMosaic requires at least one DemGrid")

    @property
    def bounds(self) -> GeoRect:
        grids = list(self.tiles.values())
        return GeoRect(
            west=min(g.west for g in grids),
            south=min(g.south for g in grids),
            east=max(g.east for g in grids),
            north=max(g.north for g in grids),
        )

    def _grid_for(self, lon: float, lat: float) -> Optional[DemGrid]:
        lon_key = int(math.floor(lon))
        lat_key = int(math.floor(lat))

        candidate = self.tiles.get((lat_key, lon_key))
        if candidate is not None and candidate.contains(lon, lat):
            return candidate

        # Points on an exact-degree edge belong to the west/south neighbor.
        for dy, dx in ((0, -1), (-1, 0), (-1, -1)):
            neighbor = self.tiles.get((lat_key + dy, lon_key + dx))
            if neighbor is not None and neighbor.contains(lon, lat):
                return neighbor

        for grid in self.tiles.values():
            if grid.contains(lon, lat):
                return grid
        return None

    def sample(self, lon: float, lat: float, *, fill_value: float = 0.0) -> float:
        grid = self._grid_for(float(lon), float(lat))
        if grid is None:
            return float(fill_value)
        return grid.sample(float(lon), float(lat), fill_value=fill_value)

    def sample_grid(
        self, rect: GeoRect, *, width: int, height: int, fill_value: float = 0.0
    ) -> np.ndarray:
        lons, lats = _sample_axes(rect, width, height)
        out = np.full((lats.size, lons.size), float(fill_value), dtype=np.float32)
        for j, lat in enumerate(lats):
            for i, lon in enumerate(lons):
                out[j, i] = self.sample(float(lon), float(lat), fill_value=fill_value)
        return out

    @staticmethod
    def from_geotiffs(
        paths: Iterable[Path], *, method: SamplingMethod = "bilinear"
    ) -> "DemMosaic":
        tiles: dict[tuple[int, int], DemGrid] = {}
        for path in paths:
            grid = DemGrid.from_geotiff(path, method=method)
            # Anchor to integer degrees (tile SW corner).
            tiles[(int(math.floor(grid.south)), int(math.floor(grid.west)))] = grid
        return DemMosaic(tiles=tiles)


def check_tile_heights(
    heights: Any,
    *,
    width: int,
    height: int,
    tile: TileID,
    neighbor: Optional[TileID] = None,
    direction: Optional[BorderDirection] = None,
) -> np.ndarray:
    """Return ``heights`` as a float32 ``(height, width)`` array of finite values.

    Raises RasterReadError naming the tile (and, for neighbor reads, the
    neighbor and direction) when the buffer has the wrong shape or holds
    NaN/inf samples.
    """

    target = tile if neighbor is None else neighbor
    try:
        heights = np.asarray(heights, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise RasterReadError(
            f"Heights for tile {target} are not numeric: {exc}",
            tile=tile,
            neighbor=neighbor,
            direction=direction,
        ) from exc
    if heights.shape != (int(height), int(width)):
        raise RasterReadError(
            f"Expected {height}x{width} heights for tile {target}, got {heights.shape}",
            tile=tile,
            neighbor=neighbor,
            direction=direction,
        )
    if not np.all(np.isfinite(heights)):
        raise RasterReadError(
            f"Non-finite heights for tile {target}",
            tile=tile,
            neighbor=neighbor,
            direction=direction,
        )
    return heights


class DemHeightReader:
    """Reads north-up float32 tile heights from a HeightSource."""

    def __init__(self, grid: TileGrid, *, fill_value: float = 0.0) -> None:
        self._grid = grid
        self._fill_value = float(fill_value)

    def read_heights(
        self, dataset: HeightSource, tile: TileID, width: int, height: int
    ) -> np.ndarray:
        rect = self._grid.tile_bounds(tile)
        try:
            heights = dataset.sample_grid(
                rect, width=width, height=height, fill_value=self._fill_value
            )
        except Exception as exc:  # noqa: BLE001
            raise RasterReadError(
                f"Failed to read heights for tile {tile}: {exc}", tile=tile
            ) from exc

        return check_tile_heights(heights, width=width, height=height, tile=tile)
