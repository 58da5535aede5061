from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np

from .tile_pyramid import GeoRect

GridVertex = tuple[int, int]
Triangle = tuple[GridVertex, GridVertex, GridVertex]


class GridHeights(Protocol):
    def index_of_grid_coordinate(self, x: int, y: int) -> int: ...

    def height_at(self, x: int, y: int) -> float: ...


@dataclass(frozen=True)
class MeshVertex:
    """A mesh vertex in the tiling scheme's coordinates (degrees, meters)."""

    x: float
    y: float
    height: float


@dataclass
class Mesh:
    vertices: list[MeshVertex] = field(default_factory=list)
    indices: list[int] = field(default_factory=list)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def is_empty(self) -> bool:
        return not self.indices

    def clear(self) -> None:
        self.vertices.clear()
        self.indices.clear()

    def as_arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(N, 3)`` float64 vertices and ``(M, 3)`` uint32 triangles."""

        verts = np.array(
            [(v.x, v.y, v.height) for v in self.vertices], dtype=np.float64
        ).reshape(-1, 3)
        tris = np.asarray(self.indices, dtype=np.uint32).reshape(-1, 3)
        return verts, tris


class StripState:
    """Rolling three-vertex window over a triangle strip.

    Consecutive strip triangles share an edge in reverse order, so every
    second triangle has its first two vertices swapped to keep one winding.
    """

    def __init__(self) -> None:
        self._slots: list[GridVertex] = [(0, 0), (0, 0), (0, 0)]
        self._count = 0
        self._odd = False

    def reset(self) -> None:
        self._count = 0
        self._odd = False

    def push(self, vertex: GridVertex) -> Optional[Triangle]:
        self._slots[self._count] = vertex
        self._count += 1
        if self._count < 3:
            return None

        self._odd = not self._odd
        a, b, c = self._slots
        triangle = (a, b, c) if self._odd else (b, a, c)

        # Keep the shared edge for the next triangle.
        self._slots[0] = b
        self._slots[1] = c
        self._count = 2
        return triangle


def is_degenerate(triangle: Triangle) -> bool:
    a, b, c = triangle
    return a == b or b == c or a == c


class MeshAssembler:
    """Collects strip vertices into a deduplicated, indexed triangle mesh.

    ``emit_vertex`` is the sink handed to the heightfield walk. Degenerate
    triangles only advance the winding parity.
    """

    def __init__(
        self,
        bounds: GeoRect,
        tile_size: int,
        heightfield: GridHeights,
        mesh: Optional[Mesh] = None,
    ) -> None:
        if tile_size < 2:
            raise ValueError(f"tile_size must be >= 2, got {tile_size}")
        self._bounds = bounds
        self._heightfield = heightfield
        self._cell_x = (bounds.east - bounds.west) / float(tile_size - 1)
        self._cell_y = (bounds.north - bounds.south) / float(tile_size - 1)
        self._mesh = mesh if mesh is not None else Mesh()
        self._index_map: dict[int, int] = {}
        self._strip = StripState()

    @property
    def mesh(self) -> Mesh:
        return self._mesh

    @property
    def cell_size(self) -> tuple[float, float]:
        return self._cell_x, self._cell_y

    def reset(self) -> None:
        self._mesh.clear()
        self._index_map.clear()
        self._strip.reset()

    def emit_vertex(self, x: int, y: int) -> None:
        triangle = self._strip.push((int(x), int(y)))
        if triangle is None or is_degenerate(triangle):
            return
        for gx, gy in triangle:
            self._mesh.indices.append(self._vertex_index(gx, gy))

    def to_geographic(self, x: int, y: int) -> tuple[float, float]:
        return (
            self._bounds.west + x * self._cell_x,
            self._bounds.north - y * self._cell_y,
        )

    def _vertex_index(self, x: int, y: int) -> int:
        key = self._heightfield.index_of_grid_coordinate(x, y)
        index = self._index_map.get(key)
        if index is not None:
            return index

        index = len(self._mesh.vertices)
        geo_x, geo_y = self.to_geographic(x, y)
        self._mesh.vertices.append(
            MeshVertex(x=geo_x, y=geo_y, height=self._heightfield.height_at(x, y))
        )
        self._index_map[key] = index
        return index
