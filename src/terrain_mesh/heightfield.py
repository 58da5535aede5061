"""Chunked-LOD heightfield simplification.

A square grid of ``2^n + 1`` height samples is simplified with a
view-independent bintree error update (Lindstrom-Koller style, as used by
Thatcher Ulrich's chunked LOD), the resulting per-sample activation levels
are propagated quadtree-style so that every active sample has its
dependencies active, and the mesh is emitted as a single triangle strip.

Grid coordinates are ``(x, y)`` with x growing east and y growing south:
row 0 is the north edge of the tile.
"""

from __future__ import annotations

import math
from typing import Callable, Final

import numpy as np

from .errors import InvalidGeometryConfiguration
from .tile_pyramid import BorderDirection

INACTIVE: Final[int] = -1
MAX_ACTIVATION_LEVEL: Final[int] = 14

# Low zooms densify on a lattice of at most this many cells per tile edge.
LOW_ZOOM_LATTICE_CELLS: Final[int] = 16

VertexSink = Callable[[int, int], None]


def _log2_size(size: int) -> int:
    cells = int(size) - 1
    if cells < 2 or (cells & (cells - 1)) != 0:
        raise InvalidGeometryConfiguration(
            f"heightfield size must be 2^n + 1 (>= 3), got {size}"
        )
    return cells.bit_length() - 1


class Heightfield:
    def __init__(self, heights: np.ndarray, size: int) -> None:
        self._log_size = _log2_size(size)
        self._size = int(size)
        arr = np.asarray(heights)
        if arr.size != self._size * self._size:
            raise ValueError(
                f"heights must hold {self._size}x{self._size} samples, got {arr.size}"
            )
        self._heights = arr.reshape(self._size, self._size)
        self._levels = np.full((self._size, self._size), INACTIVE, dtype=np.int8)
        self._active_count = 0

    @property
    def size(self) -> int:
        return self._size

    @property
    def log_size(self) -> int:
        return self._log_size

    @property
    def active_count(self) -> int:
        return self._active_count

    def index_of_grid_coordinate(self, x: int, y: int) -> int:
        return int(y) * self._size + int(x)

    def height_at(self, x: int, y: int) -> float:
        return float(self._heights[y, x])

    def level_at(self, x: int, y: int) -> int:
        return int(self._levels[y, x])

    def is_active(self, x: int, y: int) -> bool:
        return self._levels[y, x] >= 0

    def active_mask(self) -> np.ndarray:
        return self._levels >= 0

    def activate(self, x: int, y: int, level: int) -> None:
        """Raise the activation level of a sample; never lowers it."""

        level = min(int(level), MAX_ACTIVATION_LEVEL)
        current = int(self._levels[y, x])
        if level > current:
            if current == INACTIVE:
                self._active_count += 1
            self._levels[y, x] = level

    def clear(self) -> None:
        self._levels.fill(INACTIVE)
        self._active_count = 0

    # Simplification.

    def apply_error_threshold(
        self, error: float, force_all_mandatory: bool = False
    ) -> None:
        """Activate every sample whose removal would exceed ``error``."""

        if not error > 0:
            raise InvalidGeometryConfiguration(
                f"geometric error must be > 0, got {error}"
            )
        self.clear()

        last = self._size - 1
        # South-west half (apex at the SW corner), then north-east half.
        self._update(error, 0, last, last, last, 0, 0)
        self._update(error, last, 0, 0, 0, last, last)

        for x, y in ((0, 0), (last, 0), (0, last), (last, last)):
            self.activate(x, y, 0)

        if force_all_mandatory:
            step = last // LOW_ZOOM_LATTICE_CELLS
            if step > 0:
                for y in range(0, self._size, step):
                    for x in range(0, self._size, step):
                        self.activate(x, y, 0)

        self._propagate()

    def _update(
        self, base_max_error: float, ax: int, ay: int, rx: int, ry: int, lx: int, ly: int
    ) -> None:
        dx = lx - rx
        dy = ly - ry
        if abs(dx) <= 1 and abs(dy) <= 1:
            return

        # Base vertex: midpoint of the hypotenuse.
        bx = rx + (dx >> 1)
        by = ry + (dy >> 1)

        expected = (self.height_at(lx, ly) + self.height_at(rx, ry)) / 2.0
        error = abs(self.height_at(bx, by) - expected)
        if error >= base_max_error:
            level = int(math.floor(math.log2(error / base_max_error) + 0.5))
            self.activate(bx, by, level)

        self._update(base_max_error, bx, by, ax, ay, rx, ry)
        self._update(base_max_error, bx, by, lx, ly, ax, ay)

    def _propagate(self) -> None:
        center = self._size >> 1
        for target_level in range(self._log_size):
            # Two passes: edges shared by sibling squares settle in the first.
            self._propagate_level(center, center, self._log_size - 1, target_level)
            self._propagate_level(center, center, self._log_size - 1, target_level)

    def _propagate_level(self, cx: int, cy: int, level: int, target_level: int) -> None:
        half = 1 << level
        quarter = half >> 1

        if level > target_level:
            for j in range(2):
                for i in range(2):
                    self._propagate_level(
                        cx - quarter + half * i,
                        cy - quarter + half * j,
                        level - 1,
                        target_level,
                    )
            return

        if level > 0:
            # Child centers to the edge midpoints they depend on.
            lev = self.level_at(cx + quarter, cy - quarter)  # ne
            self.activate(cx + half, cy, lev)
            self.activate(cx, cy - half, lev)

            lev = self.level_at(cx - quarter, cy - quarter)  # nw
            self.activate(cx, cy - half, lev)
            self.activate(cx - half, cy, lev)

            lev = self.level_at(cx - quarter, cy + quarter)  # sw
            self.activate(cx - half, cy, lev)
            self.activate(cx, cy + half, lev)

            lev = self.level_at(cx + quarter, cy + quarter)  # se
            self.activate(cx, cy + half, lev)
            self.activate(cx + half, cy, lev)

        # Edge midpoints to the center.
        self.activate(cx, cy, self.level_at(cx + half, cy))
        self.activate(cx, cy, self.level_at(cx, cy - half))
        self.activate(cx, cy, self.level_at(cx, cy + half))
        self.activate(cx, cy, self.level_at(cx - half, cy))

    # Border consistency.

    def _edge(self, direction: BorderDirection) -> list[tuple[int, int]]:
        last = self._size - 1
        direction = BorderDirection(direction)
        if direction == BorderDirection.NORTH:
            return [(i, 0) for i in range(self._size)]
        if direction == BorderDirection.SOUTH:
            return [(i, last) for i in range(self._size)]
        if direction == BorderDirection.EAST:
            return [(last, i) for i in range(self._size)]
        return [(0, i) for i in range(self._size)]

    def anchor_corners(self) -> int:
        """Activate the edge midpoints of every corner-anchored square.

        Activation that enters through one edge climbs the quadtree and only
        reaches another edge at these samples (distances 2, 4, ... size // 2
        from each corner). With them active on every edge, a shared edge
        holds exactly the union of both tiles' own edge activation, however
        many other neighbors either tile reconciled against.
        Returns the number of newly activated samples.
        """

        last = self._size - 1
        before = self._active_count
        distance = 2
        while distance <= last // 2:
            for offset in (distance, last - distance):
                for x, y in ((offset, 0), (offset, last), (0, offset), (last, offset)):
                    self.activate(x, y, 0)
            distance <<= 1
        self._propagate()
        return self._active_count - before

    def propagate_border_activation(
        self, other: "Heightfield", direction: BorderDirection
    ) -> int:
        """Activate this heightfield's ``direction`` edge wherever ``other`` is active.

        ``other`` is the neighbor lying across ``direction``; its opposite edge
        covers the same samples. Returns the number of newly activated samples.
        """

        if other.size != self._size:
            raise ValueError(
                f"neighbor heightfield size {other.size} does not match {self._size}"
            )
        direction = BorderDirection(direction)
        before = self._active_count
        mine = self._edge(direction)
        theirs = other._edge(direction.opposite)
        for (x, y), (ox, oy) in zip(mine, theirs):
            lev = other.level_at(ox, oy)
            if lev >= 0:
                self.activate(x, y, lev)
        self._propagate()
        return self._active_count - before

    # Mesh generation.

    def generate_mesh(self, emit: VertexSink, activation_level: int = 0) -> None:
        """Emit the simplified mesh as one triangle strip through ``emit(x, y)``.

        The square is walked counterclockwise around its four triangular
        quadrants; corners are turned with degenerate triangles.
        """

        half = 1 << (self._log_size - 1)
        cx = cy = half
        corners = (
            (cx + half, cy + half),  # se
            (cx + half, cy - half),  # ne
            (cx - half, cy - half),  # nw
            (cx - half, cy + half),  # sw
        )

        state = _StripWalk(emit, activation_level)
        state.emit(*corners[0])

        for i in range(4):
            if (state.previous_level & 1) == 0:
                state.ptr ^= 1
            else:
                state.emit_previous()

            lx, ly = corners[i]
            rx, ry = corners[(i + 1) & 3]
            state.emit(lx, ly)
            state.previous_level = 2 * self._log_size + 1
            self._generate_quadrant(state, lx, ly, cx, cy, rx, ry, 2 * self._log_size)

        if not state.in_buffer(*corners[0]):
            state.emit(*corners[0])

    def _generate_quadrant(
        self,
        state: "_StripWalk",
        lx: int,
        ly: int,
        tx: int,
        ty: int,
        rx: int,
        ry: int,
        recursion_level: int,
    ) -> None:
        if recursion_level <= 0:
            return
        if self.level_at(tx, ty) < state.activation_level:
            return

        bx = (lx + rx) >> 1
        by = (ly + ry) >> 1

        self._generate_quadrant(state, lx, ly, bx, by, tx, ty, recursion_level - 1)

        if not state.in_buffer(tx, ty):
            if ((recursion_level + state.previous_level) & 1) != 0:
                state.ptr ^= 1
            else:
                state.emit_previous()
            state.emit(tx, ty)
            state.previous_level = recursion_level

        self._generate_quadrant(state, tx, ty, bx, by, rx, ry, recursion_level - 1)


class _StripWalk:
    """The last two strip vertices plus the parity bookkeeping of the walk."""

    def __init__(self, sink: VertexSink, activation_level: int) -> None:
        self._sink = sink
        self.activation_level = int(activation_level)
        self.buffer: list[tuple[int, int]] = [(-1, -1), (-1, -1)]
        self.ptr = 0
        self.previous_level = 0

    def in_buffer(self, x: int, y: int) -> bool:
        return (x, y) == self.buffer[0] or (x, y) == self.buffer[1]

    def emit(self, x: int, y: int) -> None:
        self._sink(x, y)
        self.buffer[self.ptr] = (x, y)

    def emit_previous(self) -> None:
        # Repeats the older buffered vertex, producing a degenerate triangle.
        x, y = self.buffer[1 - self.ptr]
        self._sink(x, y)
