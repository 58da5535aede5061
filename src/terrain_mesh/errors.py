from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .tile_pyramid import BorderDirection, TileID


class MeshTilerError(RuntimeError):
    """Base error for mesh tile builds."""


class RasterReadError(MeshTilerError):
    """Raised when the heights of a tile (or one of its neighbors) cannot be read."""

    def __init__(
        self,
        message: str,
        *,
        tile: Optional["TileID"] = None,
        neighbor: Optional["TileID"] = None,
        direction: Optional["BorderDirection"] = None,
    ) -> None:
        super().__init__(message)
        self.tile = tile
        self.neighbor = neighbor
        self.direction = direction


class InvalidGeometryConfiguration(MeshTilerError, ValueError):
    """Raised for non-positive tile dimensions or tile counts."""
