"""Terrain mesh tiling (DEM heightfields -> simplified, seam-free tile meshes)."""

from .child_flags import ChildFlags
from .config import MeshTilerConfig
from .dem_source import DemGrid, DemHeightReader, DemMosaic
from .errors import InvalidGeometryConfiguration, MeshTilerError, RasterReadError
from .geometric_error import ErrorBudget, error_for_zoom, estimate_level_zero_error
from .heights_cache import HeightsCache
from .mesh_assembler import Mesh, MeshVertex
from .mesh_tiler import MeshTile, MeshTiler
from .tile_pyramid import BorderDirection, GeoRect, TileGrid, TileID

__all__ = [
    "BorderDirection",
    "ChildFlags",
    "DemGrid",
    "DemHeightReader",
    "DemMosaic",
    "ErrorBudget",
    "GeoRect",
    "HeightsCache",
    "InvalidGeometryConfiguration",
    "Mesh",
    "MeshTile",
    "MeshTiler",
    "MeshTilerConfig",
    "MeshTilerError",
    "MeshVertex",
    "RasterReadError",
    "TileGrid",
    "TileID",
    "error_for_zoom",
    "estimate_level_zero_error",
]
